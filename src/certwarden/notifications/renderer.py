"""Jinja2 rendering for the ``email`` deploy action.

Named templates are looked up in the operator's ``templates_path`` first
and then in the ``templates`` directory shipped with this package, so a
single file can be overridden without copying the rest.  Template text
sent inline with an action comes from API callers and is rendered in a
sandboxed environment.
"""

from __future__ import annotations

from typing import Any

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from certwarden.core.errors import ValidationError


class TemplateRenderer:
    """Renders email bodies from named or inline templates.

    Parameters
    ----------
    templates_path:
        Optional directory whose files shadow the built-in templates.

    """

    def __init__(self, templates_path: str | None = None) -> None:
        search = [PackageLoader("certwarden.notifications", "templates")]
        if templates_path:
            search.insert(0, FileSystemLoader(templates_path))
        self._files = Environment(
            loader=ChoiceLoader(search),
            autoescape=lambda name: bool(name) and name.endswith((".html", ".htm")),
        )
        self._inline = {
            False: SandboxedEnvironment(autoescape=False),
            True: SandboxedEnvironment(autoescape=True),
        }

    def render(self, name: str, context: dict[str, Any]) -> str:
        """Render template file *name*; ``.html`` files are autoescaped."""
        return self._files.get_template(name).render(context)

    def render_string(self, source: str, context: dict[str, Any], *, html: bool = False) -> str:
        """Render caller-supplied template text.

        A template that does not parse or fails while rendering is
        reported as a :class:`ValidationError`.
        """
        try:
            return self._inline[html].from_string(source).render(context)
        except TemplateError as exc:
            raise ValidationError(f"Invalid email template: {exc}") from exc
