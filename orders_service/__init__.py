"""Orders service: order assembly and stock reconciliation."""

__version__ = "0.1.0"
