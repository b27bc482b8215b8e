"""
SMTP delivery of rendered mails.
"""

from __future__ import annotations

import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage

from app.config import MailSettings
from app.pipeline.results import CallResult

logger = logging.getLogger(__name__)


class BaseMailer(ABC):
    @abstractmethod
    def send(self, *, to: str, subject: str, html: str, text: str) -> CallResult[str]:
        """
        Deliver one message. Returns the recipient on success.
        """


class SmtpMailer(BaseMailer):
    """
    Sends multipart (text + HTML) mails over SMTP with optional STARTTLS and login.
    """

    def __init__(self, settings: MailSettings, *, timeout_seconds: float = 30.0) -> None:
        self._settings = settings
        self._timeout_seconds = timeout_seconds

    def send(self, *, to: str, subject: str, html: str, text: str) -> CallResult[str]:
        msg = EmailMessage()
        msg["From"] = self._settings.from_address
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(
                self._settings.smtp_host,
                self._settings.smtp_port,
                timeout=self._timeout_seconds,
            ) as smtp:
                if self._settings.smtp_use_tls:
                    smtp.starttls()
                if self._settings.smtp_user and self._settings.smtp_password:
                    smtp.login(self._settings.smtp_user, self._settings.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused, smtplib.SMTPAuthenticationError) as exc:
            return CallResult.permanent(type(exc).__name__, detail=str(exc))
        except smtplib.SMTPResponseException as exc:
            if 400 <= exc.smtp_code < 500:
                return CallResult.transient(f"smtp_{exc.smtp_code}", detail=str(exc))
            return CallResult.permanent(f"smtp_{exc.smtp_code}", detail=str(exc))
        except (smtplib.SMTPException, OSError) as exc:
            return CallResult.transient(type(exc).__name__, detail=str(exc))

        logger.info("Mail delivered to=%s subject=%s", to, subject)
        return CallResult.success(to)
