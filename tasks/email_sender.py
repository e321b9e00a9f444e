# tasks/email_sender.py
"""
SMTP delivery through aiosmtplib

The rest of the service is synchronous (Flask handlers, APScheduler worker
threads), so every send runs its own short event loop with asyncio.run().
One connection per message; failures are reported, never retried.
"""

import asyncio
import logging
from email.message import Message
from typing import Iterable, List, Optional

import aiosmtplib

from core.exceptions import ConfigurationError, DeliveryError
from core.models import DEFAULT_SMTP_PORT, ConnectionConfig

logger = logging.getLogger(__name__)

SMTP_TIMEOUT = 30.0


class SMTPSender:
    """Sends prepared MIME messages to one configured relay"""

    def __init__(self,
                 host: str,
                 port: int = DEFAULT_SMTP_PORT,
                 username: str = '',
                 password: str = '',
                 from_address: str = '',
                 timeout: float = SMTP_TIMEOUT,
                 validate_certs: bool = True):
        self.host = host
        self.port = port or DEFAULT_SMTP_PORT
        self.username = username
        self.password = password
        self.from_address = from_address or username
        self.timeout = timeout
        self.validate_certs = validate_certs

    @classmethod
    def from_connection(cls, config: ConnectionConfig, timeout: float = SMTP_TIMEOUT) -> 'SMTPSender':
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_user,
            password=config.smtp_password,
            from_address=config.smtp_from,
            timeout=timeout,
        )

    def send(self, message: Message, recipients: Iterable[str]):
        """
        Deliver a message synchronously

        Args:
            message: Fully built MIME message
            recipients: Envelope recipients

        Raises:
            ConfigurationError: if no SMTP host is configured
            DeliveryError: on connection, TLS, authentication or protocol failure
        """
        if not self.host:
            raise ConfigurationError("SMTP host not configured")

        recipients = list(recipients)
        if not recipients:
            raise DeliveryError("no recipients")

        asyncio.run(self._async_send(message, recipients))
        logger.info(f"Email sent to {len(recipients)} recipient(s) via {self.host}:{self.port}")

    async def _async_send(self, message: Message, recipients: List[str]):
        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            timeout=self.timeout,
            use_tls=self.port == 465,  # Implicit TLS for port 465
            validate_certs=self.validate_certs,
        )
        try:
            # STARTTLS is negotiated on connect when the server offers it
            await smtp.connect()

            if self.username and self.password:
                if smtp.is_ehlo_or_helo_needed:
                    await smtp.ehlo()
                await smtp.auth_plain(self.username, self.password)

            errors, response = await smtp.send_message(
                message, sender=self.from_address, recipients=recipients)
            if errors:
                logger.warning(f"Some recipients were refused: {', '.join(errors)}")
            logger.debug(f"SMTP response: {response}")

        except aiosmtplib.SMTPResponseException as e:
            raise DeliveryError(f"SMTP error {e.code}: {e.message}", smtp_code=e.code) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"failed to send email: {e}") from e
        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except aiosmtplib.SMTPException as e:
                    logger.debug(f"SMTP quit failed: {e}")


def sender_from_connection(config: ConnectionConfig, timeout: Optional[float] = None) -> SMTPSender:
    """Sender factory used by the execution pipeline"""
    return SMTPSender.from_connection(config, timeout=timeout or SMTP_TIMEOUT)
