"""Base class for user-supplied certwarden hooks.

A hook is named by dotted class path in the ``hooks.registered`` config
section and receives certificate lifecycle events on a worker thread::

    class InventoryHook(Hook):
        def on_certificate_renewed(self, ctx: dict) -> None:
            push_to_inventory(ctx["new_fingerprint"])

Only the methods a hook overrides do anything.
"""

from __future__ import annotations

import abc


class Hook(abc.ABC):
    """Receiver for certificate lifecycle events.

    Parameters
    ----------
    config:
        The entry's free-form ``config`` mapping, already checked by
        :meth:`validate_config`.

    """

    def __init__(self, config: dict | None = None) -> None:
        self.config = config or {}

    @classmethod
    def validate_config(cls, config: dict) -> None:
        """Raise :class:`ValueError` when *config* is unusable; runs before ``__init__``."""

    # Each handler gets a private copy of the event context.

    def on_certificate_created(self, ctx: dict) -> None:
        """``name``, ``fingerprint``, ``cert_type``."""

    def on_certificate_renewed(self, ctx: dict) -> None:
        """``name``, ``old_fingerprint``, ``new_fingerprint``, ``valid_to``.

        Fired once the renewal is committed and before deploy actions run.
        """

    def on_certificate_deleted(self, ctx: dict) -> None:
        """``name``, ``fingerprint``."""

    def on_deploy_completed(self, ctx: dict) -> None:
        """``name``, ``fingerprint``, ``success``, ``actionsExecuted``, ``failures``, ``details``."""
