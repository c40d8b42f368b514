"""teamspace: coordinator/worker team lifecycle over a shared SQLite store."""

__version__ = "0.1.0"
