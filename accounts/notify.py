"""
accounts/notify.py -- Outbound email notifications for the account lifecycle.

The lifecycle service depends only on the Notifier protocol:

    send(recipients, template_id, params) -> None

Implementations:
  SmtpNotifier       -- renders the template and delivers it over SMTP
                        (STARTTLS or implicit TLS) with a socket timeout.
  LogNotifier        -- dev fallback when SMTP_HOST is empty. Logs the
                        recipients and template id only; params carry
                        verification links and OTPs and are never logged.
  BackgroundNotifier -- fire-and-forget wrapper. Hands each send to a thread
                        pool and returns immediately; a failed send is logged
                        from the worker and never reaches the caller.

Template ids:
  1 = email verification link (params: verification_url)
  2 = password-reset OTP      (params: otp, expires_minutes)
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from concurrent.futures import Future, ThreadPoolExecutor
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

logger = logging.getLogger("accountkit.notify")

TEMPLATE_VERIFY_EMAIL = 1
TEMPLATE_PASSWORD_RESET_OTP = 2


class Notifier(Protocol):
    def send(self, recipients: list[str], template_id: int, params: dict) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def render_template(template_id: int, params: dict, product_name: str = "AccountKit") -> tuple[str, str, str]:
    """Return (subject, text_body, html_body) for a template id.

    Raises ValueError for an unknown id.
    """
    if template_id == TEMPLATE_VERIFY_EMAIL:
        url = params["verification_url"]
        subject = f"Verify your {product_name} email address"
        text_body = f"Confirm your email address by opening this link:\n\n{url}\n"
        html_body = (
            "<p>Thanks for signing up.</p>"
            f'<p><a href="{url}">Verify your email address</a></p>'
            f"<p>If the button does not work, paste this link into your browser:<br>{url}</p>"
        )
        return subject, text_body, html_body

    if template_id == TEMPLATE_PASSWORD_RESET_OTP:
        otp = params["otp"]
        minutes = params.get("expires_minutes", 5)
        subject = f"Your {product_name} password reset code"
        text_body = f"Your password reset code is {otp}. It expires in {minutes} minutes.\n"
        html_body = (
            "<p>Use this code to reset your password:</p>"
            f'<p style="font-size:24px;font-weight:700;letter-spacing:3px">{otp}</p>'
            f"<p>The code expires in <b>{minutes} minutes</b>. "
            "If you did not ask for a reset you can ignore this message.</p>"
        )
        return subject, text_body, html_body

    raise ValueError(f"Unknown email template id: {template_id!r}")


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class SmtpNotifier:
    """Deliver rendered templates over SMTP.

    Raises smtplib.SMTPException / OSError on delivery failure; wrap in
    BackgroundNotifier to make sends fire-and-forget.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "",
        from_name: str = "AccountKit",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or user
        self.from_name = from_name
        self.timeout = timeout

    def send(self, recipients: list[str], template_id: int, params: dict) -> None:
        subject, text_body, html_body = render_template(template_id, params, self.from_name)
        context = ssl.create_default_context()

        if self.use_tls:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout)

        with server:
            if self.use_tls:
                server.starttls(context=context)
            if self.user and self.password:
                server.login(self.user, self.password)
            for to_email in recipients:
                msg = MIMEMultipart("alternative")
                msg["Subject"] = subject
                msg["From"] = f"{self.from_name} <{self.from_email}>"
                msg["To"] = to_email
                msg.attach(MIMEText(text_body, "plain"))
                msg.attach(MIMEText(html_body, "html"))
                server.sendmail(self.from_email, to_email, msg.as_string())
                logger.info("Email sent (template=%d, to=%s)", template_id, redact_email(to_email))


class LogNotifier:
    """Dev-mode notifier: records that an email would have gone out."""

    def send(self, recipients: list[str], template_id: int, params: dict) -> None:
        logger.info(
            "Email not sent, SMTP not configured (template=%d, to=%s)",
            template_id,
            ", ".join(redact_email(r) for r in recipients),
        )


class BackgroundNotifier:
    """Run another notifier's sends on a worker pool and ignore the result.

    Usage:
        notifier = BackgroundNotifier(SmtpNotifier(host="smtp.example.com"))
        notifier.send(["a@x.com"], TEMPLATE_VERIFY_EMAIL, {...})  # returns at once
        notifier.shutdown()
    """

    def __init__(self, inner: Notifier, max_workers: int = 4) -> None:
        self.inner = inner
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def send(self, recipients: list[str], template_id: int, params: dict) -> None:
        future = self._executor.submit(self.inner.send, list(recipients), template_id, dict(params))
        future.add_done_callback(_log_send_failure)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_send_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.warning("Notification send failed: %s: %s", type(exc).__name__, exc)


def build_notifier(
    *,
    smtp_host: str = "",
    smtp_port: int = 587,
    smtp_user: str = "",
    smtp_password: str = "",
    smtp_use_tls: bool = True,
    smtp_from_email: str = "",
    smtp_from_name: str = "AccountKit",
    smtp_timeout_seconds: float = 10.0,
) -> BackgroundNotifier:
    """Pick SMTP when a host is configured, the log fallback otherwise."""
    if smtp_host:
        inner: Notifier = SmtpNotifier(
            host=smtp_host,
            port=smtp_port,
            user=smtp_user,
            password=smtp_password,
            use_tls=smtp_use_tls,
            from_email=smtp_from_email,
            from_name=smtp_from_name,
            timeout=smtp_timeout_seconds,
        )
    else:
        inner = LogNotifier()
    return BackgroundNotifier(inner)
