"""Remote archive catalog reconciliation and download fan-out."""

__version__ = "0.1.0"
