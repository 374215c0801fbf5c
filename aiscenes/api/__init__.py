"""HTTP API for the node service."""
