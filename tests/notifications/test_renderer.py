"""Tests for certwarden.notifications.renderer."""

from __future__ import annotations

import pytest

from certwarden.core.errors import ValidationError
from certwarden.notifications.renderer import TemplateRenderer

CONTEXT = {
    "certificate": {
        "name": "web",
        "subject": "CN=web",
        "issuer": "CN=web",
        "fingerprint": "AB12",
        "validFrom": "2026-01-01T00:00:00+00:00",
        "validTo": "2027-01-01T00:00:00+00:00",
        "daysUntilExpiry": 75,
        "domains": ["a.example.com", "b.example.com"],
        "ips": [],
        "isExpired": False,
    },
    "date": "2026-10-18",
    "time": "10:00:00 UTC",
}


class TestBuiltInTemplates:
    def test_text_body(self):
        text = TemplateRenderer().render("deploy_email_body.txt", CONTEXT)
        assert "Certificate Update: web" in text
        assert "Domains:           a.example.com, b.example.com" in text
        assert "IP addresses" not in text
        assert "expired" not in text

    def test_html_is_escaped(self):
        context = {**CONTEXT, "certificate": {**CONTEXT["certificate"], "name": "<b>web</b>"}}
        html = TemplateRenderer().render("deploy_email_body.html", context)
        assert "&lt;b&gt;web&lt;/b&gt;" in html
        assert "<b>web</b>" not in html


class TestOverrides:
    def test_templates_path_wins(self, tmp_path):
        (tmp_path / "deploy_email_body.txt").write_text("custom {{ certificate.name }}")
        renderer = TemplateRenderer(str(tmp_path))
        assert renderer.render("deploy_email_body.txt", CONTEXT) == "custom web"
        # built-ins still resolve for files not overridden
        assert "<html>" in renderer.render("deploy_email_body.html", CONTEXT)


class TestInline:
    def test_render_string(self):
        assert TemplateRenderer().render_string("{{ certificate.name }}!", CONTEXT) == "web!"

    def test_html_inline_escapes(self):
        out = TemplateRenderer().render_string("{{ v }}", {"v": "<i>"}, html=True)
        assert out == "&lt;i&gt;"

    def test_syntax_error(self):
        with pytest.raises(ValidationError):
            TemplateRenderer().render_string("{% if %}", CONTEXT)

    def test_sandbox_blocks_attribute_escape(self):
        from jinja2.exceptions import SecurityError

        try:
            out = TemplateRenderer().render_string("{{ ''.__class__.__mro__ }}", {})
        except (SecurityError, ValidationError):
            return
        assert "class" not in out
