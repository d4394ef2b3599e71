from __future__ import annotations

import os
import smtplib
from email.message import EmailMessage
from typing import Optional


def _smtp_config() -> dict:
    return {
        "host": os.getenv("SMTP_HOST", ""),
        "port": int(os.getenv("SMTP_PORT", "587")),
        "user": os.getenv("SMTP_USER", ""),
        "password": os.getenv("SMTP_PASSWORD", ""),
        "from_email": os.getenv("SMTP_FROM", ""),
        "use_tls": os.getenv("SMTP_USE_TLS", "true").lower() == "true",
        "timeout": float(os.getenv("SMTP_TIMEOUT_SECONDS", "30")),
    }


def smtp_configured() -> bool:
    config = _smtp_config()
    return bool(config["host"] and config["from_email"])


def send_email(
    to_email: str,
    subject: str,
    body: str,
    category: Optional[str] = None,
) -> None:
    config = _smtp_config()
    if not config["host"] or not config["from_email"]:
        raise RuntimeError("SMTP is not configured. Set SMTP_HOST and SMTP_FROM.")

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = config["from_email"]
    message["To"] = to_email
    if category:
        message["X-Category"] = category
    message.set_content(body)

    with smtplib.SMTP(config["host"], config["port"], timeout=config["timeout"]) as server:
        if config["use_tls"]:
            server.starttls()
        if config["user"]:
            server.login(config["user"], config["password"])
        server.send_message(message)
