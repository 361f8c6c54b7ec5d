"""``email`` deploy action: a rendered notice with optional attachments."""

from __future__ import annotations

import logging
import os
import smtplib
from datetime import UTC, datetime
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any

from certwarden.core.types import ActionType
from certwarden.deploy.executors.base import ActionExecutor, DeployContext, action_failed
from certwarden.deploy.substitute import substitute

if TYPE_CHECKING:
    from certwarden.config.settings import SmtpSettings
    from certwarden.models.actions import EmailAction
    from certwarden.notifications.renderer import TemplateRenderer

log = logging.getLogger(__name__)

DEFAULT_FROM = "Certificate Manager <cert-manager@localhost>"
DEFAULT_SUBJECT = "Certificate Update: {name}"


def template_context(ctx: DeployContext, now: datetime | None = None) -> dict[str, Any]:
    """Variables available to email templates."""
    now = now or datetime.now(UTC)
    cert = ctx.certificate
    context: dict[str, Any] = dict(ctx.tokens)
    context.update(
        certificate={
            "name": cert.name,
            "fingerprint": cert.fingerprint,
            "subject": cert.subject,
            "issuer": cert.issuer,
            "validFrom": cert.valid_from.isoformat() if cert.valid_from else None,
            "validTo": cert.valid_to.isoformat() if cert.valid_to else None,
            "domains": list(cert.domains),
            "ips": list(cert.ips),
            "daysUntilExpiry": cert.days_until_expiry(now),
            "isExpired": cert.is_expired(now),
            "certType": cert.cert_type.value,
        },
        date=now.strftime("%Y-%m-%d"),
        time=now.strftime("%H:%M:%S UTC"),
        timestamp=now.isoformat(),
    )
    return context


class EmailExecutor(ActionExecutor):
    action_types = (ActionType.EMAIL,)

    def __init__(self, smtp: SmtpSettings | None, renderer: TemplateRenderer) -> None:
        self._smtp = smtp
        self._renderer = renderer

    # -- settings ------------------------------------------------------------

    def _server(self, action: EmailAction) -> dict[str, Any]:
        """Merge the action's ``smtp`` overrides over the configured server."""
        base = self._smtp
        opts = action.smtp or {}
        server = {
            "host": opts.get("host") or (base.host if base else ""),
            "port": int(opts.get("port") or (base.port if base else 587)),
            "secure": bool(opts.get("secure", False)),
            "use_tls": bool(opts.get("use_tls", opts.get("useTls", base.use_tls if base else True))),
            "username": opts.get("user") or opts.get("username") or (base.username if base else ""),
            "password": opts.get("password") or (base.password if base else ""),
            "timeout": base.timeout_seconds if base else 30,
        }
        if not server["host"]:
            raise action_failed(action, "no SMTP host configured")
        return server

    def _from_address(self, action: EmailAction) -> str:
        if action.from_address:
            return action.from_address
        if self._smtp and self._smtp.from_address:
            return self._smtp.from_address
        return DEFAULT_FROM

    # -- message ---------------------------------------------------------------

    def build_message(self, action: EmailAction, ctx: DeployContext) -> MIMEMultipart:
        context = template_context(ctx)
        subject = action.subject or substitute(DEFAULT_SUBJECT, ctx.tokens)
        template = action.template or {}
        if template.get("html") or template.get("text"):
            html = self._renderer.render_string(template["html"], context, html=True) if template.get("html") else None
            text = self._renderer.render_string(template["text"], context) if template.get("text") else None
        else:
            html = self._renderer.render("deploy_email_body.html", context)
            text = self._renderer.render("deploy_email_body.txt", context)

        msg = MIMEMultipart("mixed")
        msg["From"] = self._from_address(action)
        msg["To"] = ", ".join(action.to)
        if action.cc:
            msg["Cc"] = ", ".join(action.cc)
        msg["Subject"] = subject

        body = MIMEMultipart("alternative")
        if text:
            body.attach(MIMEText(text, "plain", "utf-8"))
        if html:
            body.attach(MIMEText(html, "html", "utf-8"))
        msg.attach(body)

        for source in action.attach_certificates:
            path = ctx.source_path(source)
            with open(path, "rb") as fh:
                part = MIMEApplication(fh.read(), Name=os.path.basename(path))
            part["Content-Disposition"] = f'attachment; filename="{os.path.basename(path)}"'
            msg.attach(part)
        return msg

    # -- send ------------------------------------------------------------------

    def execute(self, action: EmailAction, ctx: DeployContext) -> str:  # type: ignore[override]
        server = self._server(action)
        msg = self.build_message(action, ctx)
        recipients = [*action.to, *action.cc, *action.bcc]
        timeout = min(ctx.timeout, server["timeout"]) if server["timeout"] else ctx.timeout
        smtp_cls = smtplib.SMTP_SSL if server["secure"] else smtplib.SMTP
        try:
            with smtp_cls(server["host"], server["port"], timeout=timeout) as smtp:
                smtp.ehlo()
                if not server["secure"] and server["use_tls"]:
                    smtp.starttls()
                    smtp.ehlo()
                if server["username"]:
                    smtp.login(server["username"], server["password"])
                smtp.sendmail(msg["From"], recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise action_failed(action, f"{server['host']}:{server['port']}: {exc}") from exc
        log.info("Sent deploy notice for %s to %d recipient(s)", ctx.certificate.name, len(recipients))
        return f"Email sent to {len(recipients)} recipient(s)"
