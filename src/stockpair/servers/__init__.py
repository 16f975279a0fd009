"""HTTP surface for the device pairing server."""
