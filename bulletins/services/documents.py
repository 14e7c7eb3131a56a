# bulletins/services/documents.py
"""
Données plates transmises au moteur de rendu (HTML/PDF, hors de ce projet).

Les données sont construites à l'approbation et conservées dans un
``BulletinDocumentStore`` injecté (cache Django avec TTL par défaut), puis
évincées à la publication.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from django.core.cache import caches

from academics.models import Term
from bulletins.conf import get_setting
from bulletins.exceptions import InvalidTransition
from bulletins.models import BulletinStatus

logger = logging.getLogger(__name__)

DOCUMENT_STATES = (BulletinStatus.APPROVED, BulletinStatus.PUBLISHED, BulletinStatus.SENT)


@dataclass(frozen=True)
class BulletinDocumentData:
    bulletin_id: int
    school_info: Dict
    student: Dict
    period: Dict
    subjects: List[Dict]
    general_average: Optional[float]
    class_rank: Optional[int]
    total_students: Optional[int]
    annual_average: Optional[float] = None
    council_decision: Optional[Dict] = None
    signatures: List[Dict] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


def _as_float(value):
    return None if value is None else float(value)


def build_document_data(bulletin, school_info: Optional[Dict] = None) -> BulletinDocumentData:
    if bulletin.status not in DOCUMENT_STATES:
        raise InvalidTransition(bulletin.status, "render")

    student = bulletin.student
    subjects = []
    for subject in bulletin.subjects():
        row = subject.to_dict()
        score = subject.score_for(bulletin.term)
        row["score"] = None if score is None else str(score)
        subjects.append(row)

    council = None
    if bulletin.council_decision:
        council = {"decision": bulletin.council_decision, "mention": bulletin.mention}

    signatures = [
        {
            "signer_name": s.signer_name,
            "signer_position": s.signer_position,
            "has_stamp": s.has_stamp,
            "verification_code": s.verification_code,
            "signed_at": s.signed_at.isoformat(),
        }
        for s in bulletin.signatures.all()
    ]

    return BulletinDocumentData(
        bulletin_id=bulletin.pk,
        school_info=dict(school_info if school_info is not None else get_setting("SCHOOL_INFO")),
        student={
            "id": student.pk,
            "first_name": student.first_name,
            "last_name": student.last_name,
            "date_of_birth": student.date_of_birth.isoformat() if student.date_of_birth else None,
            "class_name": bulletin.school_class.name,
        },
        period={
            "term": bulletin.term,
            "term_label": Term(bulletin.term).label,
            "academic_year": bulletin.academic_year,
        },
        subjects=subjects,
        general_average=_as_float(bulletin.general_average),
        class_rank=bulletin.class_rank,
        total_students=bulletin.total_students_in_class,
        annual_average=_as_float(bulletin.annual_average),
        council_decision=council,
        signatures=signatures,
    )


# =======================
# Stores
# =======================
class BulletinDocumentStore(ABC):
    @abstractmethod
    def put(self, bulletin_id, data: BulletinDocumentData):
        ...

    @abstractmethod
    def get(self, bulletin_id) -> Optional[BulletinDocumentData]:
        ...

    @abstractmethod
    def evict(self, bulletin_id):
        ...


class CacheDocumentStore(BulletinDocumentStore):
    """Store adossé au framework de cache Django ; chaque entrée expire après ``ttl`` secondes."""

    key_prefix = "bulletins:document"

    def __init__(self, alias: Optional[str] = None, ttl: Optional[int] = None):
        self.alias = alias or get_setting("DOCUMENT_CACHE")
        self.ttl = ttl if ttl is not None else get_setting("DOCUMENT_TTL")

    @property
    def cache(self):
        return caches[self.alias]

    def _key(self, bulletin_id):
        return f"{self.key_prefix}:{bulletin_id}"

    def put(self, bulletin_id, data: BulletinDocumentData):
        self.cache.set(self._key(bulletin_id), data.to_dict(), self.ttl)

    def get(self, bulletin_id) -> Optional[BulletinDocumentData]:
        raw = self.cache.get(self._key(bulletin_id))
        if raw is None:
            return None
        return BulletinDocumentData(**raw)

    def evict(self, bulletin_id):
        self.cache.delete(self._key(bulletin_id))


def get_document_data(bulletin, store: Optional[BulletinDocumentStore] = None) -> BulletinDocumentData:
    """Lecture à travers le store : reconstruit et remet en cache en cas d'absence."""
    store = store or CacheDocumentStore()
    data = store.get(bulletin.pk)
    if data is not None:
        return data

    logger.debug("Document cache miss for bulletin %s", bulletin.pk)
    data = build_document_data(bulletin)
    store.put(bulletin.pk, data)
    return data
