"""StockPair: sign in on a TV with a short code approved from a phone."""

__version__ = "0.1.0"
