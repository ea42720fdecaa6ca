"""Smart contract deployment saga service."""

__version__ = "0.1.0"
