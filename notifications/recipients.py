# notifications/recipients.py
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from notifications.conf import get_setting
from notifications.models import Channel
from notifications.utils import normalize_phone_number

ROLE_PARENT = "parent"
ROLE_STUDENT = "student"


@dataclass(frozen=True)
class NotificationRecipient:
    id: str
    display_name: str
    role: str
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    device_tokens: Tuple[str, ...] = field(default_factory=tuple)
    preferred_language: Optional[str] = None

    def address_for(self, channel):
        """Adresse du destinataire pour un canal, None si absente."""
        channel = Channel(channel)
        if channel == Channel.SMS:
            return self.phone or None
        if channel == Channel.EMAIL:
            return self.email or None
        if channel == Channel.WHATSAPP:
            return self.whatsapp or None
        if channel == Channel.PUSH:
            return list(self.device_tokens) or None
        return None

    @property
    def is_dispatchable(self) -> bool:
        return any(self.address_for(c) for c in Channel.values)


def _device_tokens(user) -> Tuple[str, ...]:
    return tuple(user.devices.order_by("pk").values_list("token", flat=True))


def recipients_for_student(student) -> List[NotificationRecipient]:
    """
    Destinataires d'un bulletin : le parent d'abord (destinataire principal),
    puis l'élève. Seuls les destinataires joignables sont retournés.
    """
    default_language = get_setting("DEFAULT_LANGUAGE")
    recipients = []

    parent = student.parent
    if parent is not None:
        recipients.append(NotificationRecipient(
            id=str(parent.pk),
            display_name=str(parent),
            role=ROLE_PARENT,
            email=parent.user.email or None,
            phone=normalize_phone_number(parent.phone),
            whatsapp=normalize_phone_number(parent.whatsapp or parent.phone),
            device_tokens=_device_tokens(parent.user),
            preferred_language=parent.preferred_language or default_language,
        ))

    recipients.append(NotificationRecipient(
        id=str(student.pk),
        display_name=student.full_name,
        role=ROLE_STUDENT,
        email=student.user.email or None,
        phone=normalize_phone_number(student.phone),
        whatsapp=None,
        device_tokens=_device_tokens(student.user),
        preferred_language=student.preferred_language or default_language,
    ))
    return [r for r in recipients if r.is_dispatchable]


def primary_recipient(recipients) -> Optional[NotificationRecipient]:
    """Le parent s'il y en a un, sinon le premier destinataire."""
    recipients = list(recipients)
    for recipient in recipients:
        if recipient.role == ROLE_PARENT:
            return recipient
    return recipients[0] if recipients else None
