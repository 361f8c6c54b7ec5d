"""Lifecycle hooks subsystem for certwarden.

Public API::

    from certwarden.hooks import Hook, HookRegistry, KNOWN_EVENTS
"""

from certwarden.hooks.base import Hook
from certwarden.hooks.events import KNOWN_EVENTS
from certwarden.hooks.registry import HookRegistry

__all__ = ["KNOWN_EVENTS", "Hook", "HookRegistry"]
