"""certwarden: certificate lifecycle manager for a single host."""

__version__ = "1.0.0"
