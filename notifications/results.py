# notifications/results.py
"""
Résultats immuables des tentatives d'envoi.

Chaque tentative produit un ``NotificationResult`` ; le résumé d'un lot est
obtenu en repliant l'ensemble des résultats en une seule fois
(``NotificationBatchResult.from_results``), jamais par des compteurs
partagés entre threads.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from notifications.models import Channel

SKIP_NO_CONTACT = "no-contact"
SKIP_ALREADY_SENT = "already-sent"


@dataclass(frozen=True)
class NotificationResult:
    bulletin_id: str
    channel: str
    recipient_id: str
    success: bool
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    idempotency_key: str = ""


@dataclass(frozen=True)
class SkippedAttempt:
    recipient_id: str
    channel: str
    reason: str


@dataclass(frozen=True)
class NotificationBatchResult:
    bulletin_id: Optional[str] = None
    successful_sms: int = 0
    successful_email: int = 0
    successful_whatsapp: int = 0
    successful_push: int = 0
    failed: int = 0
    results: Tuple[NotificationResult, ...] = ()
    skipped: Tuple[SkippedAttempt, ...] = ()

    @classmethod
    def from_results(cls, results: Iterable[NotificationResult], skipped: Iterable[SkippedAttempt] = (), bulletin_id=None):
        # Ordre stable quel que soit l'ordre d'achèvement des threads
        results = tuple(sorted(results, key=lambda r: (r.recipient_id, r.channel)))
        skipped = tuple(sorted(skipped, key=lambda s: (s.recipient_id, s.channel)))
        successes: Dict[str, int] = {c: 0 for c in Channel.values}
        failed = 0
        for r in results:
            if r.success:
                successes[r.channel] += 1
            else:
                failed += 1
        return cls(
            bulletin_id=bulletin_id,
            successful_sms=successes[Channel.SMS],
            successful_email=successes[Channel.EMAIL],
            successful_whatsapp=successes[Channel.WHATSAPP],
            successful_push=successes[Channel.PUSH],
            failed=failed,
            results=results,
            skipped=skipped,
        )

    @property
    def successful(self) -> int:
        return self.successful_sms + self.successful_email + self.successful_whatsapp + self.successful_push

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def success_rate(self) -> Optional[float]:
        """Part des tentatives réussies (0..1), None si rien n'a été tenté."""
        if not self.results:
            return None
        return round(self.successful / len(self.results), 4)

    def per_recipient(self) -> Dict[str, Dict[str, NotificationResult]]:
        """{recipient_id: {channel: result}} : ce que le directeur consulte."""
        report: Dict[str, Dict[str, NotificationResult]] = {}
        for r in self.results:
            report.setdefault(r.recipient_id, {})[r.channel] = r
        return report

    def failed_pairs(self) -> List[Tuple[str, str]]:
        return [(r.recipient_id, r.channel) for r in self.results if not r.success]

    def delivered_to(self, recipient_id) -> bool:
        """
        Vrai si le destinataire a au moins un canal réussi, dans ce lot ou
        lors d'un envoi précédent (tentative ignorée car déjà envoyée).
        """
        recipient_id = str(recipient_id)
        if any(r.success and r.recipient_id == recipient_id for r in self.results):
            return True
        return any(s.reason == SKIP_ALREADY_SENT and s.recipient_id == recipient_id for s in self.skipped)


@dataclass(frozen=True)
class BulkDispatchSummary:
    processed: int
    successful: int
    failed: int
    results: Tuple[NotificationBatchResult, ...] = ()
    errors: Dict[str, str] = field(default_factory=dict)

    def for_bulletin(self, bulletin_id) -> Optional[NotificationBatchResult]:
        for batch in self.results:
            if batch.bulletin_id == str(bulletin_id):
                return batch
        return None
