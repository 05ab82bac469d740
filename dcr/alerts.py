from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .settings import settings


def _smtp_configured() -> bool:
    return all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    )


def send_email(subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - DCR_ENABLE_EMAIL=true
      - DCR_SMTP_HOST / DCR_SMTP_PORT
      - DCR_SMTP_USER / DCR_SMTP_PASSWORD
      - DCR_EMAIL_FROM / DCR_EMAIL_TO

    Returns False instead of raising; alerting never affects reconciliation.
    """
    if not settings.enable_email or not _smtp_configured():
        return False

    msg = MIMEMultipart()
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError):
        return False


def alert_unhealthy_stop(service: str, container_id: str, stopped: bool, deregistered: bool) -> bool:
    """Report a container pulled from discovery for failing its Consul check."""
    subject = f"DOWN: {service} ({container_id})"
    body = (
        f"Service: {service}\n"
        f"Container: {container_id}\n"
        f"Detail: failing Consul health check\n"
        f"Stopped: {'yes' if stopped else 'NO'}\n"
        f"Deregistered: {'yes' if deregistered else 'NO'}"
    )
    return send_email(subject, body)
