from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .db import try_log_event
from .models import DeploymentVerdict, Overall
from .settings import settings


def send_email(subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - DVR_ENABLE_EMAIL=true
      - DVR_SMTP_HOST / DVR_SMTP_PORT
      - DVR_SMTP_USER / DVR_SMTP_PASSWORD
      - DVR_EMAIL_FROM / DVR_EMAIL_TO
    """
    if not settings.enable_email:
        return False
    if not all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    ):
        return False

    try:
        msg = MIMEMultipart()
        msg["From"] = settings.email_from
        msg["To"] = settings.email_to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        server.quit()
        return True
    except (OSError, smtplib.SMTPException) as e:
        try_log_event("WARN", f"Alert email failed: {type(e).__name__}: {e}")
        return False


def alert_on_verdict(verdict: DeploymentVerdict, report_text: str) -> bool:
    """Mail the report when the deployment is not fully healthy."""
    if verdict.overall is Overall.ALL_HEALTHY:
        return False
    subject = f"[{verdict.overall.value}] deployment of {verdict.primary_service}"
    return send_email(subject, report_text)
