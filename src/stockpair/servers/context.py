from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stockpair.device_auth.service import PairingCoordinator
    from stockpair.device_auth.sweeper import ExpirySweeper
    from stockpair.utils.environment import PairingSettings


@dataclass(frozen=True)
class AppContext:
    """
    Context holding the fully wired pairing components, built once at
    application start-up and exposed to handlers via ``app.state.context``.
    """

    settings: PairingSettings
    coordinator: PairingCoordinator
    sweeper: ExpirySweeper | None = None
