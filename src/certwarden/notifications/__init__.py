"""Jinja2 rendering for email deploy actions."""

from certwarden.notifications.renderer import TemplateRenderer

__all__ = ["TemplateRenderer"]
