"""Core enums and the error taxonomy."""
