# notifications/ledger.py
"""
Registre des envois réussis, pour ne jamais renvoyer deux fois la même
notification (bulletin, destinataire, canal) lors d'une relance.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Set

from django.db import IntegrityError, transaction

from notifications.models import NotificationDelivery

logger = logging.getLogger(__name__)


def idempotency_key(bulletin_id, recipient_id, channel) -> str:
    return f"{bulletin_id}:{recipient_id}:{getattr(channel, 'value', channel)}"


class DeliveryLedger(ABC):
    @abstractmethod
    def succeeded_keys(self, keys: Iterable[str]) -> Set[str]:
        """Sous-ensemble de ``keys`` déjà envoyé avec succès."""

    @abstractmethod
    def record_success(self, result):
        ...

    def has_succeeded(self, key: str) -> bool:
        return key in self.succeeded_keys([key])


class InMemoryDeliveryLedger(DeliveryLedger):
    def __init__(self):
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    def succeeded_keys(self, keys: Iterable[str]) -> Set[str]:
        with self._lock:
            return {k for k in keys if k in self._keys}

    def record_success(self, result):
        with self._lock:
            self._keys.add(result.idempotency_key)


class OrmDeliveryLedger(DeliveryLedger):
    """Registre persistant (``NotificationDelivery``). À utiliser depuis le thread appelant uniquement."""

    def succeeded_keys(self, keys: Iterable[str]) -> Set[str]:
        keys = list(keys)
        if not keys:
            return set()
        return set(
            NotificationDelivery.objects.filter(idempotency_key__in=keys).values_list("idempotency_key", flat=True)
        )

    def record_success(self, result):
        try:
            with transaction.atomic():
                NotificationDelivery.objects.create(
                    idempotency_key=result.idempotency_key,
                    bulletin_id=str(result.bulletin_id),
                    recipient_id=str(result.recipient_id),
                    channel=result.channel,
                    sent_at=result.sent_at,
                )
        except IntegrityError:
            # déjà enregistré par un envoi concurrent
            logger.info("Delivery %s already recorded", result.idempotency_key)
