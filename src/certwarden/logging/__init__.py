"""Logging subsystem for certwarden.

Public API::

    from certwarden.logging import configure_logging

    configure_logging(settings.logging)
"""

from certwarden.logging.setup import configure_logging, operation_context

__all__ = ["configure_logging", "operation_context"]
