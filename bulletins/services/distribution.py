# bulletins/services/distribution.py
import logging
from typing import Iterable, List, Optional

from academics.models import Term
from bulletins.conf import get_setting
from bulletins.exceptions import InvalidTransition
from bulletins.models import BulletinStatus
from bulletins.services.lifecycle import BulletinLifecycle
from notifications.delivery import NotificationDispatcher
from notifications.messages import BulletinNotice
from notifications.recipients import primary_recipient, recipients_for_student
from notifications.results import BulkDispatchSummary, NotificationBatchResult

logger = logging.getLogger(__name__)

SENDABLE_STATES = (BulletinStatus.PUBLISHED, BulletinStatus.SENT)


def notice_for(bulletin, school_info: Optional[dict] = None) -> BulletinNotice:
    info = school_info if school_info is not None else get_setting("SCHOOL_INFO")
    return BulletinNotice(
        bulletin_id=str(bulletin.pk),
        student_name=bulletin.student.full_name,
        class_name=bulletin.school_class.name,
        term=bulletin.term,
        term_label=Term(bulletin.term).label,
        academic_year=bulletin.academic_year,
        general_average=None if bulletin.general_average is None else float(bulletin.general_average),
        class_rank=bulletin.class_rank,
        total_students=bulletin.total_students_in_class,
        school_name=info.get("name", ""),
        school_contact=info.get("phone") or info.get("email", ""),
    )


class BulletinDistributor:
    """Envoie les bulletins publiés puis les marque « envoyés » selon le résultat."""

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None, lifecycle: Optional[BulletinLifecycle] = None):
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.lifecycle = lifecycle or BulletinLifecycle()

    def _check_sendable(self, bulletin):
        if bulletin.status not in SENDABLE_STATES:
            raise InvalidTransition(bulletin.status, "send")

    def distribute(self, bulletin, channels, language=None, recipients=None) -> NotificationBatchResult:
        self._check_sendable(bulletin)
        recipients = list(recipients) if recipients is not None else recipients_for_student(bulletin.student)
        primary = primary_recipient(recipients)

        result = self.dispatcher.dispatch(notice_for(bulletin), recipients, channels, language)
        self.lifecycle.mark_sent(bulletin.pk, result, primary.id if primary else None)
        return result

    def retry(self, bulletin, previous: NotificationBatchResult, language=None, recipients=None) -> NotificationBatchResult:
        """Relance ciblée des couples (destinataire, canal) en échec."""
        self._check_sendable(bulletin)
        recipients = list(recipients) if recipients is not None else recipients_for_student(bulletin.student)
        primary = primary_recipient(recipients)

        result = self.dispatcher.retry_failed(notice_for(bulletin), recipients, previous, language)
        self.lifecycle.mark_sent(bulletin.pk, result, primary.id if primary else None)
        return result

    def distribute_many(self, bulletins: Iterable, channels, language=None) -> BulkDispatchSummary:
        items = []
        primaries = {}
        for bulletin in bulletins:
            if bulletin.status not in SENDABLE_STATES:
                logger.info("Bulletin %s not sendable (%s), skipped", bulletin.pk, bulletin.status)
                continue
            recipients = recipients_for_student(bulletin.student)
            primary = primary_recipient(recipients)
            primaries[str(bulletin.pk)] = primary.id if primary else None
            items.append((notice_for(bulletin), recipients))

        summary = self.dispatcher.send_bulk(items, channels, language)

        sent: List[str] = []
        for batch in summary.results:
            if self.lifecycle.mark_sent(batch.bulletin_id, batch, primaries.get(batch.bulletin_id)):
                sent.append(batch.bulletin_id)
        logger.info("Distribution: %d/%d bulletins marked sent", len(sent), summary.processed)
        return summary
