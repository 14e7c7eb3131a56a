# notifications/providers.py
"""
Adaptateurs d'envoi, un par canal.

Chaque provider expose ``send(to, message, timeout)`` et lève une exception
en cas d'échec ; c'est le dispatcher qui convertit l'exception en résultat.
Les providers ne touchent jamais à la base de données (ils tournent dans
les threads du pool d'envoi).
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import requests
from django.core.mail import EmailMultiAlternatives
from django.core.validators import validate_email
from django.core.exceptions import ValidationError

from notifications.conf import get_setting
from notifications.models import Channel
from notifications.utils import is_valid_phone

logger = logging.getLogger(__name__)


class InvalidAddress(ValueError):
    pass


class ProviderError(Exception):
    pass


def _check_phone(to):
    if not is_valid_phone(to):
        raise InvalidAddress(f"invalid phone number: {to!r}")


class ChannelProvider(ABC):
    channel = None

    @abstractmethod
    def send(self, to, message, timeout: float) -> str:
        """Envoie ``message`` à ``to`` ; lève une exception en cas d'échec."""


# =======================
# Email
# =======================
class EmailProvider(ChannelProvider):
    channel = Channel.EMAIL

    def __init__(self, from_email: Optional[str] = None):
        self.from_email = from_email or get_setting('EMAIL_FROM')

    def send(self, to, message, timeout: float) -> str:
        try:
            validate_email(to)
        except ValidationError:
            raise InvalidAddress(f"invalid email address: {to!r}")

        email = EmailMultiAlternatives(
            subject=message.subject or "",
            body=message.body or "",
            from_email=self.from_email,
            to=[to],
        )
        if message.html:
            email.attach_alternative(message.html, "text/html")
        sent = email.send(fail_silently=False)
        if not sent:
            raise ProviderError("email backend accepted no message")
        return "sent"


# =======================
# Fournisseurs HTTP
# =======================
class HttpSmsProvider(ChannelProvider):
    """Passerelle SMS HTTP (JSON : sender, message, recipients)."""
    channel = Channel.SMS

    def __init__(self, api_url: str, api_key: str, sender_id: str = 'SCHOOL', session=None):
        if not api_url or not api_key:
            raise ValueError("SMS gateway URL and API key are required")
        self.api_url = api_url
        self.api_key = api_key
        self.sender_id = (sender_id or 'SCHOOL')[:11]
        self.session = session or requests.Session()

    def send(self, to, message, timeout: float) -> str:
        _check_phone(to)
        headers = {
            'api-key': self.api_key,
            'Content-Type': 'application/json',
        }
        payload = {
            'sender': self.sender_id,
            'message': message.body,
            'recipients': [to],
        }
        response = self.session.post(self.api_url, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()

        result = response.json()
        if result.get('status') != 'success':
            raise ProviderError(f"SMS gateway error: {result.get('message', 'Unknown error')}")
        return str(result.get('message_id') or result.get('status'))


class WhatsAppCloudProvider(ChannelProvider):
    """WhatsApp Business Cloud API (message texte)."""
    channel = Channel.WHATSAPP

    def __init__(self, api_url: str, token: str, session=None):
        if not api_url or not token:
            raise ValueError("WhatsApp API URL and token are required")
        self.api_url = api_url
        self.token = token
        self.session = session or requests.Session()

    def send(self, to, message, timeout: float) -> str:
        _check_phone(to)
        headers = {
            'Authorization': f'Bearer {self.token}',
            'Content-Type': 'application/json',
        }
        payload = {
            'messaging_product': 'whatsapp',
            'to': to.lstrip('+'),
            'type': 'text',
            'text': {'body': message.body},
        }
        response = self.session.post(self.api_url, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()

        result = response.json()
        messages = result.get('messages') or []
        if not messages:
            raise ProviderError(f"WhatsApp API error: {result.get('error', result)}")
        return str(messages[0].get('id', 'sent'))


class HttpPushProvider(ChannelProvider):
    """Push via l'API HTTP FCM ; ``to`` est la liste des jetons d'appareil."""
    channel = Channel.PUSH

    def __init__(self, api_url: str, server_key: str, session=None):
        if not api_url or not server_key:
            raise ValueError("Push API URL and server key are required")
        self.api_url = api_url
        self.server_key = server_key
        self.session = session or requests.Session()

    def send(self, to, message, timeout: float) -> str:
        tokens = list(to or [])
        if not tokens:
            raise InvalidAddress("no device token")
        headers = {
            'Authorization': f'key={self.server_key}',
            'Content-Type': 'application/json',
        }
        payload = {
            'registration_ids': tokens,
            'notification': {'title': message.subject, 'body': message.body},
        }
        response = self.session.post(self.api_url, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()

        result = response.json()
        if not result.get('success'):
            raise ProviderError(f"push rejected for all {len(tokens)} device(s)")
        return f"push-sent-{result['success']}"


class ConsoleProvider(ChannelProvider):
    """Développement : journalise le message au lieu de l'envoyer."""

    def __init__(self, channel):
        self.channel = Channel(channel)

    def send(self, to, message, timeout: float) -> str:
        logger.info("[%s] to=%s subject=%s body=%s", self.channel.value, to, message.subject, message.body)
        return "logged"


def build_providers() -> Dict[str, ChannelProvider]:
    """Providers configurés dans les settings ; un backend vide ou 'disabled' retire le canal."""
    providers: Dict[str, ChannelProvider] = {Channel.EMAIL.value: EmailProvider()}

    sms_backend = get_setting('SMS_BACKEND')
    if sms_backend == 'http':
        providers[Channel.SMS.value] = HttpSmsProvider(
            get_setting('SMS_API_URL'), get_setting('SMS_API_KEY'), get_setting('SMS_SENDER_ID'),
        )
    elif sms_backend == 'console':
        providers[Channel.SMS.value] = ConsoleProvider(Channel.SMS)

    whatsapp_backend = get_setting('WHATSAPP_BACKEND')
    if whatsapp_backend == 'cloud':
        providers[Channel.WHATSAPP.value] = WhatsAppCloudProvider(
            get_setting('WHATSAPP_API_URL'), get_setting('WHATSAPP_TOKEN'),
        )
    elif whatsapp_backend == 'console':
        providers[Channel.WHATSAPP.value] = ConsoleProvider(Channel.WHATSAPP)

    push_backend = get_setting('PUSH_BACKEND')
    if push_backend == 'fcm':
        providers[Channel.PUSH.value] = HttpPushProvider(
            get_setting('PUSH_API_URL'), get_setting('PUSH_SERVER_KEY'),
        )
    elif push_backend == 'console':
        providers[Channel.PUSH.value] = ConsoleProvider(Channel.PUSH)

    return providers
