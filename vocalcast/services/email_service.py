"""
Email Service Module

Sends operator notifications (manual payout requests) over SMTP, with the
Mailgun HTTP API as a fallback when SMTP is not configured or fails.

Usage:
    from vocalcast.services.email_service import EmailService

    mailer = EmailService()
    result = mailer.send_payout_request_email('alice', 'GABC...', Decimal('12.5'))
"""

import logging
import os
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional, Union
from uuid import uuid4

import requests

logger = logging.getLogger(__name__)


def _timeout() -> float:
    return float(os.getenv('EMAIL_TIMEOUT', '10'))


def _notify_recipients() -> List[str]:
    raw = os.getenv('NOTIFY_TO') or ''
    return [item.strip() for item in raw.split(',') if item.strip()]


@dataclass
class EmailResult:
    """Result of an email send attempt."""
    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    http_status: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'provider': self.provider,
            'message_id': self.message_id,
            'error': self.error,
            'http_status': self.http_status,
        }


class EmailProvider(ABC):
    """Abstract base class for email providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if provider has required configuration."""
        pass

    @abstractmethod
    def send(
        self,
        to: Union[str, List[str]],
        subject: str,
        html: str,
        text: str,
        from_email: Optional[str] = None,
    ) -> EmailResult:
        """Send an email. Returns EmailResult."""
        pass


class SMTPProvider(EmailProvider):
    """Send emails through an SMTP mailbox (Gmail app password by default)."""

    @property
    def name(self) -> str:
        return 'smtp'

    def is_configured(self) -> bool:
        return bool(os.getenv('NOTIFY_EMAIL') and os.getenv('NOTIFY_PASS'))

    def send(
        self,
        to: Union[str, List[str]],
        subject: str,
        html: str,
        text: str,
        from_email: Optional[str] = None,
    ) -> EmailResult:
        host = os.getenv('SMTP_HOST', 'smtp.gmail.com')
        port = int(os.getenv('SMTP_PORT', '587'))
        username = os.getenv('NOTIFY_EMAIL')
        password = os.getenv('NOTIFY_PASS')
        use_tls = os.getenv('SMTP_USE_TLS', 'true').lower() in ('true', '1', 'yes')

        if not username or not password:
            return EmailResult(
                success=False,
                provider=self.name,
                error='SMTP not configured (missing NOTIFY_EMAIL or NOTIFY_PASS)',
            )

        from_email = from_email or username
        recipients = [to] if isinstance(to, str) else list(to)

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = from_email
        msg['To'] = ', '.join(recipients)
        msg.attach(MIMEText(text, 'plain', 'utf-8'))
        msg.attach(MIMEText(html, 'html', 'utf-8'))

        try:
            smtp_class = smtplib.SMTP if use_tls else smtplib.SMTP_SSL
            with smtp_class(host, port, timeout=_timeout()) as server:
                if use_tls:
                    server.starttls()
                server.login(username, password)
                server.sendmail(from_email, recipients, msg.as_string())

            message_id = f"<smtp-{uuid4().hex[:16]}@{from_email.split('@')[-1]}>"
            return EmailResult(success=True, provider=self.name, message_id=message_id)

        except smtplib.SMTPAuthenticationError as e:
            logger.error('SMTP authentication failed: %s', e.smtp_code)
            return EmailResult(success=False, provider=self.name, error='Authentication failed')
        except (smtplib.SMTPException, OSError) as e:
            logger.error('SMTP error: %s', e.__class__.__name__)
            return EmailResult(success=False, provider=self.name, error=str(e))


class MailgunProvider(EmailProvider):
    """Send emails via Mailgun HTTP API."""

    @property
    def name(self) -> str:
        return 'mailgun'

    def is_configured(self) -> bool:
        return bool(os.getenv('MAILGUN_API_KEY') and os.getenv('MAILGUN_DOMAIN'))

    def send(
        self,
        to: Union[str, List[str]],
        subject: str,
        html: str,
        text: str,
        from_email: Optional[str] = None,
    ) -> EmailResult:
        api_key = os.getenv('MAILGUN_API_KEY')
        domain = os.getenv('MAILGUN_DOMAIN')
        api_url = os.getenv('MAILGUN_API_URL', 'https://api.mailgun.net/v3').rstrip('/')

        if not api_key or not domain:
            return EmailResult(
                success=False,
                provider=self.name,
                error='Mailgun not configured (missing API_KEY or DOMAIN)',
            )

        from_email = from_email or os.getenv('EMAIL_FROM_ADDRESS', f'no-reply@{domain}')
        recipients = [to] if isinstance(to, str) else list(to)

        try:
            response = requests.post(
                f"{api_url}/{domain}/messages",
                auth=('api', api_key),
                data={
                    'from': f"Vocalcast <{from_email}>",
                    'to': recipients,
                    'subject': subject,
                    'text': text,
                    'html': html,
                },
                timeout=_timeout(),
            )
        except requests.exceptions.Timeout:
            logger.error('Mailgun API timeout')
            return EmailResult(success=False, provider=self.name, error='Request timeout')
        except requests.exceptions.RequestException as e:
            logger.error('Mailgun API request failed: %s', e.__class__.__name__)
            return EmailResult(success=False, provider=self.name, error=str(e))

        if response.ok:
            return EmailResult(
                success=True,
                provider=self.name,
                message_id=response.json().get('id'),
                http_status=response.status_code,
            )

        error_msg = response.text[:500] if response.text else f'HTTP {response.status_code}'
        logger.warning('Mailgun API error: status=%s body=%s', response.status_code, error_msg)
        return EmailResult(
            success=False,
            provider=self.name,
            error=error_msg,
            http_status=response.status_code,
        )


class EmailService:
    """
    Email service with fallback.

    Primary: SMTP mailbox
    Fallback: Mailgun

    Each provider is tried at most once per message.
    """

    def __init__(self, providers: Optional[List[EmailProvider]] = None):
        self.providers = providers if providers is not None else [SMTPProvider(), MailgunProvider()]

    def is_configured(self) -> bool:
        """Check if at least one provider is configured."""
        return any(provider.is_configured() for provider in self.providers)

    def get_status(self) -> dict:
        return {f'{provider.name}_configured': provider.is_configured() for provider in self.providers}

    @staticmethod
    def _mask_email(email: str) -> str:
        local, _, domain = (email or '').partition('@')
        if not domain:
            return '***'
        return f"{local[:2]}***@{domain}"

    def send_email(
        self,
        to: Union[str, List[str]],
        subject: str,
        html: str,
        text: str,
        from_email: Optional[str] = None,
    ) -> EmailResult:
        """
        Send an email synchronously.

        Tries each configured provider in order and returns the first success,
        or the last failure when every provider fails.
        """
        recipients = [to] if isinstance(to, str) else list(to)
        if not recipients:
            return EmailResult(success=False, provider='none', error='No recipients')

        masked_recipients = [self._mask_email(r) for r in recipients]
        logger.info('Sending email: to=%s subject=%s', masked_recipients, subject[:50])

        result = None
        for provider in self.providers:
            if not provider.is_configured():
                logger.debug('%s not configured, skipping', provider.name)
                continue
            result = provider.send(to=recipients, subject=subject, html=html, text=text, from_email=from_email)
            if result.success:
                logger.info(
                    'Email sent via %s: to=%s message_id=%s',
                    provider.name,
                    masked_recipients,
                    result.message_id,
                )
                return result
            logger.warning('%s failed: %s', provider.name, result.error)

        if result is not None:
            return result
        return EmailResult(
            success=False,
            provider='none',
            error='All email providers failed or not configured',
        )

    def send_payout_request_email(self, username: str, wallet: Optional[str], amount) -> EmailResult:
        """Tell the operators mailbox that a creator asked for a manual payout."""
        subject = f"Payout Request from {username}"
        text = (
            "A user has requested a payout.\n\n"
            f"Username: {username}\n"
            f"Amount: {amount} Pi\n"
            f"Wallet Address: {wallet or '(none on file)'}\n\n"
            "Please review and process this payout from the admin dashboard.\n"
        )
        html = (
            "<p>A user has requested a payout.</p>"
            "<ul>"
            f"<li>Username: {escape(username)}</li>"
            f"<li>Amount: {escape(str(amount))} Pi</li>"
            f"<li>Wallet Address: {escape(wallet or '(none on file)')}</li>"
            "</ul>"
            "<p>Please review and process this payout from the admin dashboard.</p>"
        )
        return self.send_email(to=_notify_recipients(), subject=subject, html=html, text=text)
