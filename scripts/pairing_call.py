"""pairing_call.py

Helper to drive a running pairing server from a terminal – handy for
exercising the TV and phone halves of the flow by hand.

Sub-commands
------------
* ``create``   – ``POST /pairing`` (prints the code and pairing URL)
* ``status``   – one ``GET /pairing/{code}/status``
* ``verify``   – ``POST /pairing/{code}/verify``
* ``approve``  – ``POST /pairing/{code}/approve`` (or ``/approve-signup``
  with ``--signup``); the password comes from ``--password`` or the
  ``PAIRING_PASSWORD`` env var
* ``watch``    – poll until the code resolves, like the TV does

Passwords and tokens are **never echoed**; ``watch`` prints the token only
when ``--show-token`` is given.

Example
-------
    uv run python scripts/pairing_call.py create --auth-type signin
    uv run python scripts/pairing_call.py approve ABCD234 --email me@example.com
    uv run python scripts/pairing_call.py watch ABCD234 --timeout 120
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict

import requests

from stockpair.device_auth.poller import HttpStatusSource, TvPoller
from stockpair.utils.logging import mask_sensitive

# --------------------------------------------------------------------------- #
# Constants
# --------------------------------------------------------------------------- #
FALLBACK_BASE_URL = "http://localhost:8787"
DEFAULT_ENV_FILE = Path("scripts/.env.script-helpers")


# --------------------------------------------------------------------------- #
# Environment helpers
# --------------------------------------------------------------------------- #
def _load_env_file(env_path: Path | None) -> None:
    """Load KEY=VALUE pairs from a .env style file into *os.environ*."""
    if env_path is None or not env_path.exists():
        return

    for raw in env_path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key and key not in os.environ:
            os.environ[key] = val.strip()


# --------------------------------------------------------------------------- #
# HTTP helpers
# --------------------------------------------------------------------------- #
def _request(method: str, url: str, *, body: Dict[str, Any] | None = None, timeout: int = 30) -> Dict[str, Any]:
    """Send one request and return the JSON body; exit on transport errors."""
    try:
        resp = requests.request(
            method,
            url,
            json=body,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        sys.exit(f"HTTP error communicating with pairing server: {exc}")

    try:
        payload = resp.json()
    except ValueError:
        payload = {"raw": resp.text.strip()}
    if not resp.ok:
        sys.exit(
            f"Server returned HTTP {resp.status_code}: "
            f"{json.dumps(payload, ensure_ascii=False) or 'No response body'}"
        )
    return payload


def _print(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


# --------------------------------------------------------------------------- #
# Commands
# --------------------------------------------------------------------------- #
def _cmd_create(args: argparse.Namespace) -> None:
    _print(_request("POST", f"{args.base_url}/pairing?authType={args.auth_type}"))


def _cmd_status(args: argparse.Namespace) -> None:
    payload = _request("GET", f"{args.base_url}/pairing/{args.code}/status")
    if payload.get("token"):
        # the token is one-shot; show only its tail
        payload["token"] = mask_sensitive(payload["token"])
    _print(payload)


def _cmd_verify(args: argparse.Namespace) -> None:
    _print(_request("POST", f"{args.base_url}/pairing/{args.code}/verify"))


def _cmd_approve(args: argparse.Namespace) -> None:
    password = args.password or os.getenv("PAIRING_PASSWORD")
    if not password:
        sys.exit("A password is required (--password or PAIRING_PASSWORD).")
    body: Dict[str, Any] = {"email": args.email, "password": password}
    path = "approve"
    if args.signup:
        path = "approve-signup"
        if args.display_name:
            body["displayName"] = args.display_name
    print(f"Approving code as {args.email} (password hidden)", file=sys.stderr)
    _print(_request("POST", f"{args.base_url}/pairing/{args.code}/{path}", body=body))


async def _watch(args: argparse.Namespace) -> Dict[str, Any]:
    source = HttpStatusSource(args.base_url)
    poller = TvPoller(
        source,
        args.code,
        poll_interval=args.interval,
        deadline=time.time() + args.timeout,
    )
    try:
        outcome = await poller.run()
    finally:
        await source.aclose()

    result: Dict[str, Any] = {"result": outcome.result.value, "polls": outcome.polls}
    if outcome.identity is not None:
        result["identity"] = outcome.identity.to_payload()
    if outcome.token:
        result["token"] = outcome.token if args.show_token else mask_sensitive(outcome.token)
    return result


def _cmd_watch(args: argparse.Namespace) -> None:
    try:
        result = asyncio.run(_watch(args))
    except KeyboardInterrupt:
        sys.exit("Interrupted.")
    _print(result)
    if result["result"] != "approved":
        sys.exit(1)


# --------------------------------------------------------------------------- #
# Main
# --------------------------------------------------------------------------- #
def _resolve_env_file(argv: list[str] | None) -> Path | None:
    """Pick the helper env file from ``--env-file`` before the full parse."""
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--env-file", type=Path)
    known, _ = pre.parse_known_args(argv)
    if known.env_file:
        return known.env_file
    return DEFAULT_ENV_FILE if DEFAULT_ENV_FILE.exists() else None


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI; reads ``PAIRING_BASE_URL`` so call it after loading the env file."""
    parser = argparse.ArgumentParser(description="Drive a device pairing server.")
    parser.add_argument(
        "--base-url",
        default=os.getenv("PAIRING_BASE_URL", FALLBACK_BASE_URL),
        help="Pairing server base URL",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help=f"Helper env file (default: {DEFAULT_ENV_FILE})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a pairing code (TV side)")
    create.add_argument("--auth-type", choices=("signin", "signup"), default="signin")
    create.set_defaults(func=_cmd_create)

    for name, func, help_text in (
        ("status", _cmd_status, "Check a code once"),
        ("verify", _cmd_verify, "Check that a code can still be approved"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("code")
        cmd.set_defaults(func=func)

    approve = sub.add_parser("approve", help="Approve a code (phone side)")
    approve.add_argument("code")
    approve.add_argument("--email", required=True)
    approve.add_argument("--password", help="Prefer PAIRING_PASSWORD to keep it out of history")
    approve.add_argument("--signup", action="store_true", help="Create the account first")
    approve.add_argument("--display-name")
    approve.set_defaults(func=_cmd_approve)

    watch = sub.add_parser("watch", help="Poll until the code resolves (TV side)")
    watch.add_argument("code")
    watch.add_argument("--interval", type=float, default=3.0, help="Seconds between polls")
    watch.add_argument("--timeout", type=float, default=900.0, help="Give up after N seconds")
    watch.add_argument("--show-token", action="store_true")
    watch.set_defaults(func=_cmd_watch)
    return parser


def main(argv: list[str] | None = None) -> None:
    _load_env_file(_resolve_env_file(argv))
    args = build_parser().parse_args(argv)
    args.base_url = args.base_url.rstrip("/")
    args.func(args)


if __name__ == "__main__":
    main()
