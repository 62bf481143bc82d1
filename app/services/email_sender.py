"""邮件发送：console 模式只写日志，smtp 模式真实投递"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailSender:

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider or settings.EMAIL_PROVIDER

    def send(self, to: str, subject: str, body: str) -> bool:
        """发送一封邮件，失败返回 False 由调用方记录状态"""
        try:
            if self.provider == "smtp":
                self._send_smtp(to, subject, body)
            else:
                logger.info(f"[email:{self.provider}] to={to} subject={subject}")
                logger.debug(body)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"邮件发送失败: to={to}, error={str(e)}")
            return False

    def _send_smtp(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            if settings.SMTP_USER:
                smtp.starttls()
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
            smtp.send_message(message)
