# notifications/delivery.py
import logging
import math
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import requests
from django.utils import timezone

from notifications.conf import get_setting
from notifications.ledger import DeliveryLedger, OrmDeliveryLedger, idempotency_key
from notifications.messages import (
    BulletinNotice, DatabaseTemplateCatalog, RenderedMessage, TemplateCatalog, resolve_language,
)
from notifications.models import Channel
from notifications.providers import ChannelProvider, build_providers
from notifications.results import (
    SKIP_ALREADY_SENT, SKIP_NO_CONTACT, BulkDispatchSummary, NotificationBatchResult,
    NotificationResult, SkippedAttempt,
)

logger = logging.getLogger(__name__)

ERROR_TIMEOUT = "timeout"
ERROR_CANCELLED = "cancelled"
ERROR_NO_PROVIDER = "no-provider"


class DispatchConfigurationError(Exception):
    """Erreur de configuration : l'appel entier est abandonné avant tout envoi."""


@dataclass(frozen=True)
class _Attempt:
    bulletin_id: str
    recipient_id: str
    channel: str
    to: object
    message: RenderedMessage
    key: str


def _normalize_channel(ch) -> str:
    """Accepte un membre de Channel ou une chaîne ('SMS', 'sms'...)."""
    value = str(getattr(ch, "value", ch) or "").lower()
    if value not in Channel.values:
        raise DispatchConfigurationError(f"unknown channel: {ch!r}")
    return value


class NotificationDispatcher:
    """
    Diffuse l'annonce d'un bulletin à N destinataires x M canaux.

    - planification (thread appelant) : contacts manquants et envois déjà
      réussis sont écartés (``SkippedAttempt``), les messages sont rendus ;
    - envoi (pool borné) : chaque tentative renvoie un ``NotificationResult``
      immuable, une exception devient un échec isolé ;
    - réduction (thread appelant) : un seul repli produit le résumé, les
      succès sont inscrits au registre d'idempotence.
    """

    def __init__(
        self,
        providers: Optional[Dict[str, ChannelProvider]] = None,
        ledger: Optional[DeliveryLedger] = None,
        catalog: Optional[TemplateCatalog] = None,
        max_workers: Optional[int] = None,
        send_timeout: Optional[float] = None,
        batch_timeout: Optional[float] = None,
    ):
        self.providers = providers if providers is not None else build_providers()
        self.ledger = ledger if ledger is not None else OrmDeliveryLedger()
        self.catalog = catalog if catalog is not None else DatabaseTemplateCatalog()
        self.max_workers = max_workers or get_setting("MAX_WORKERS")
        self.send_timeout = send_timeout or get_setting("SEND_TIMEOUT")
        self.batch_timeout = batch_timeout if batch_timeout is not None else get_setting("BATCH_TIMEOUT")

    # ---- configuration ----
    def _check_channels(self, channels) -> List[str]:
        normalized = []
        for ch in channels or []:
            value = _normalize_channel(ch)
            if value not in normalized:
                normalized.append(value)
        if not normalized:
            raise DispatchConfigurationError("no channels requested")
        if not any(ch in self.providers for ch in normalized):
            raise DispatchConfigurationError(f"no provider configured for channels {normalized}")
        return normalized

    # ---- planification ----
    def _plan(self, notice: BulletinNotice, recipients, channels, language,
              only_pairs: Optional[Set[Tuple[str, str]]] = None) -> Tuple[List[_Attempt], List[SkippedAttempt]]:
        bulletin_id = str(notice.bulletin_id)
        skipped: List[SkippedAttempt] = []
        candidates = []
        for recipient in recipients:
            rid = str(recipient.id)
            for channel in channels:
                if only_pairs is not None and (rid, channel) not in only_pairs:
                    continue
                to = recipient.address_for(channel)
                if not to:
                    skipped.append(SkippedAttempt(rid, channel, SKIP_NO_CONTACT))
                    continue
                candidates.append((recipient, channel, to, idempotency_key(bulletin_id, rid, channel)))

        already_sent = self.ledger.succeeded_keys([c[3] for c in candidates])
        attempts: List[_Attempt] = []
        for recipient, channel, to, key in candidates:
            if key in already_sent:
                skipped.append(SkippedAttempt(str(recipient.id), channel, SKIP_ALREADY_SENT))
                continue
            message = self.catalog.render(notice, recipient, channel, resolve_language(recipient, language))
            attempts.append(_Attempt(bulletin_id, str(recipient.id), channel, to, message, key))
        return attempts, skipped

    # ---- envoi ----
    def _failure(self, attempt: _Attempt, error: str) -> NotificationResult:
        return NotificationResult(
            bulletin_id=attempt.bulletin_id,
            channel=attempt.channel,
            recipient_id=attempt.recipient_id,
            success=False,
            error=error,
            idempotency_key=attempt.key,
        )

    def _send(self, attempt: _Attempt, cancel_event=None) -> NotificationResult:
        """Exécuté dans un thread du pool : aucune exception ne sort d'ici."""
        if cancel_event is not None and cancel_event.is_set():
            return self._failure(attempt, ERROR_CANCELLED)

        provider = self.providers.get(attempt.channel)
        if provider is None:
            return self._failure(attempt, ERROR_NO_PROVIDER)

        try:
            provider.send(attempt.to, attempt.message, self.send_timeout)
        except (requests.Timeout, TimeoutError):
            logger.warning("Timeout sending %s to %s (bulletin %s)", attempt.channel, attempt.recipient_id, attempt.bulletin_id)
            return self._failure(attempt, ERROR_TIMEOUT)
        except Exception as exc:
            logger.warning(
                "Failed sending %s to %s (bulletin %s): %s",
                attempt.channel, attempt.recipient_id, attempt.bulletin_id, exc,
            )
            return self._failure(attempt, str(exc) or exc.__class__.__name__)

        return NotificationResult(
            bulletin_id=attempt.bulletin_id,
            channel=attempt.channel,
            recipient_id=attempt.recipient_id,
            success=True,
            sent_at=timezone.now(),
            idempotency_key=attempt.key,
        )

    def _deadline(self, count: int) -> float:
        if self.batch_timeout:
            return self.batch_timeout
        waves = math.ceil(count / max(1, self.max_workers))
        return self.send_timeout * waves + 5

    def _run(self, executor, attempts: Sequence[_Attempt], cancel_event=None) -> List[NotificationResult]:
        if not attempts:
            return []
        futures = {executor.submit(self._send, a, cancel_event): a for a in attempts}
        done, not_done = wait(futures, timeout=self._deadline(len(attempts)))

        results = [f.result() for f in done]
        for future in not_done:
            future.cancel()
            attempt = futures[future]
            logger.warning("Attempt %s still pending at batch deadline", attempt.key)
            results.append(self._failure(attempt, ERROR_TIMEOUT))
        return results

    def _executor(self):
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="notify")

    def _dispatch(self, executor, notice, recipients, channels, language, cancel_event, only_pairs=None) -> NotificationBatchResult:
        attempts, skipped = self._plan(notice, recipients, channels, language, only_pairs)
        results = self._run(executor, attempts, cancel_event)

        for result in results:
            if result.success:
                self.ledger.record_success(result)

        batch = NotificationBatchResult.from_results(results, skipped, bulletin_id=str(notice.bulletin_id))
        logger.info(
            "Bulletin %s: %d sent, %d failed, %d skipped",
            notice.bulletin_id, batch.successful, batch.failed, len(batch.skipped),
        )
        return batch

    # ---- API ----
    def dispatch(self, notice: BulletinNotice, recipients, channels, language=None, cancel_event=None) -> NotificationBatchResult:
        channels = self._check_channels(channels)
        executor = self._executor()
        try:
            return self._dispatch(executor, notice, list(recipients), channels, language, cancel_event)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def retry_failed(self, notice: BulletinNotice, recipients, previous: NotificationBatchResult,
                     language=None, cancel_event=None) -> NotificationBatchResult:
        """Relance uniquement les couples (destinataire, canal) en échec dans ``previous``."""
        pairs = set(previous.failed_pairs())
        if not pairs:
            return NotificationBatchResult(bulletin_id=str(notice.bulletin_id))

        channels = self._check_channels(sorted({channel for _, channel in pairs}))
        executor = self._executor()
        try:
            return self._dispatch(executor, notice, list(recipients), channels, language, cancel_event, only_pairs=pairs)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def send_bulk(self, items: Iterable[Tuple[BulletinNotice, Sequence]], channels, language=None,
                  cancel_event=None) -> BulkDispatchSummary:
        """
        ``items`` : couples (notice, destinataires). L'échec complet d'un
        bulletin n'interrompt pas le traitement des suivants.
        """
        channels = self._check_channels(channels)
        items = list(items)
        batches: List[NotificationBatchResult] = []
        errors: Dict[str, str] = {}
        successful = failed = 0

        executor = self._executor()
        try:
            for notice, recipients in items:
                try:
                    batch = self._dispatch(executor, notice, list(recipients), channels, language, cancel_event)
                except Exception as exc:
                    logger.exception("Dispatch failed for bulletin %s", notice.bulletin_id)
                    errors[str(notice.bulletin_id)] = str(exc)
                    failed += 1
                    continue

                batches.append(batch)
                if batch.successful or any(s.reason == SKIP_ALREADY_SENT for s in batch.skipped):
                    successful += 1
                else:
                    failed += 1
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info("Bulk dispatch: %d processed, %d successful, %d failed", len(items), successful, failed)
        return BulkDispatchSummary(
            processed=len(items),
            successful=successful,
            failed=failed,
            results=tuple(batches),
            errors=errors,
        )
