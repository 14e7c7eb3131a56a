# bulletins/services/lifecycle.py
"""
Machine à états des bulletins.

    draft ──submit──> submitted ──approve──> approved ──publish──> published ──mark_sent──> sent
      ^                   │                                             ^                      │
      │                reject                                           └──── (re-envoi) ──────┘
      │                   v
      └────reopen──── rejected ──submit (réouverture implicite)──> submitted

Chaque transition verrouille la ligne du bulletin (select_for_update), vérifie
l'état courant, applique les changements, incrémente ``version`` et écrit une
ligne d'historique. Une transition refusée ne modifie rien. Un appel qui vise
l'état déjà atteint est un no-op (les relances de la couche notification sont
sûres).
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from academics.models import Term
from academics.services.averages import Scope, compute_weighted_average
from academics.services.council import determine_council_decision
from academics.services.grades import GradeStore, OrmGradeStore
from academics.services.report_cards import compute_class_rank, rank_class
from academics.services.validation import validate_term_requirements
from bulletins.conf import get_setting
from bulletins.exceptions import InvalidTransition, TransitionNotPermitted, ValidationIncomplete
from bulletins.models import Bulletin, BulletinStatus, BulletinTransition
from bulletins.services.documents import BulletinDocumentStore, CacheDocumentStore, build_document_data

logger = logging.getLogger(__name__)

ROLE_DIRECTOR = "director"
ROLE_TEACHER = "teacher"
ROLE_SYSTEM = "system"

PERMISSIONS = {
    "create_draft": {ROLE_TEACHER, ROLE_DIRECTOR},
    "submit": {ROLE_TEACHER, ROLE_DIRECTOR},
    "approve": {ROLE_DIRECTOR},
    "reject": {ROLE_DIRECTOR},
    "reopen": {ROLE_TEACHER, ROLE_DIRECTOR},
    "publish": {ROLE_DIRECTOR, ROLE_SYSTEM},
    "mark_sent": {ROLE_DIRECTOR, ROLE_SYSTEM},
}


def actor_role(user) -> str:
    if user is None:
        return ROLE_SYSTEM
    if user.is_superuser or user.is_staff:
        return ROLE_DIRECTOR
    if hasattr(user, "teacher"):
        return ROLE_TEACHER
    if hasattr(user, "parent"):
        return "parent"
    if hasattr(user, "student"):
        return "student"
    return "anonymous"


def _pk(bulletin):
    return getattr(bulletin, "pk", bulletin)


def _as_decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


@dataclass(frozen=True)
class SubmissionPolicy:
    """
    Règles de soumission et d'approbation.

    Pour un trimestre où ``allow_gaps`` est faux, la soumission exige une
    moyenne calculable ET une note dans chaque matière obligatoire : une
    seule matière manquante bloque, même si la moyenne existe.
    """
    # trimestre -> soumission tolérée malgré des notes manquantes
    allow_gaps: Dict[str, bool]
    require_complete_for_approval: bool = False

    def allows_gaps(self, term) -> bool:
        return bool(self.allow_gaps.get(str(term), False))

    @classmethod
    def from_settings(cls) -> "SubmissionPolicy":
        return cls(
            allow_gaps=dict(get_setting("ALLOW_GAPS")),
            require_complete_for_approval=bool(get_setting("REQUIRE_COMPLETE_FOR_APPROVAL")),
        )


@dataclass
class ClassPublication:
    published: List[int] = field(default_factory=list)
    already_published: List[int] = field(default_factory=list)
    not_ready: Dict[int, str] = field(default_factory=dict)


class BulletinLifecycle:
    def __init__(
        self,
        grade_store: Optional[GradeStore] = None,
        policy: Optional[SubmissionPolicy] = None,
        document_store: Optional[BulletinDocumentStore] = None,
    ):
        self.grade_store = grade_store or OrmGradeStore()
        self.policy = policy or SubmissionPolicy.from_settings()
        self.document_store = document_store or CacheDocumentStore()

    # ---- garde-fous ----
    def _check_role(self, actor, action) -> str:
        role = actor_role(actor)
        if role not in PERMISSIONS[action]:
            raise TransitionNotPermitted(role, action)
        return role

    def _transition(self, bulletin_id, action, actor, allowed_from, target, apply=None, comment=""):
        """
        Retourne (bulletin, changed). ``apply`` peut lever une exception : la
        transaction est alors annulée et rien n'est écrit.
        """
        with transaction.atomic():
            bulletin = (
                Bulletin.objects.select_for_update()
                .select_related("student", "school_class")
                .get(pk=_pk(bulletin_id))
            )
            if bulletin.status == target:
                logger.debug("Bulletin %s already %s, %s is a no-op", bulletin.pk, target, action)
                return bulletin, False
            if bulletin.status not in allowed_from:
                raise InvalidTransition(bulletin.status, action)

            previous = bulletin.status
            if apply is not None:
                apply(bulletin)
            bulletin.status = target
            bulletin.version += 1
            bulletin.save()

            BulletinTransition.objects.create(
                bulletin=bulletin,
                actor=actor,
                from_status=previous,
                to_status=target,
                comment=comment or "",
            )

        logger.info("Bulletin %s: %s -> %s (%s)", bulletin.pk, previous, target, action)
        return bulletin, True

    # ---- création ----
    def create_draft(self, student, term, academic_year, actor) -> Bulletin:
        self._check_role(actor, "create_draft")
        term = Term(term)
        if student.school_class_id is None:
            raise ValidationError({"student": "L'élève n'est rattaché à aucune classe."})

        bulletin, created = Bulletin.objects.get_or_create(
            student=student,
            term=term,
            academic_year=academic_year,
            defaults={"school_class_id": student.school_class_id, "created_by": actor},
        )
        if created:
            logger.info("Draft bulletin %s created for student %s (%s %s)", bulletin.pk, student.pk, term, academic_year)
        return bulletin

    # ---- soumission ----
    def _compute(self, bulletin):
        term = bulletin.term
        class_grades = self.grade_store.get_class_grades(bulletin.school_class_id, bulletin.academic_year)
        ranking = rank_class(class_grades, term, class_id=bulletin.school_class_id, academic_year=bulletin.academic_year)

        subjects = class_grades.get(bulletin.student_id)
        if subjects is None:
            # élève absent de l'effectif courant (changement de classe)
            subjects = self.grade_store.get_grades(bulletin.student_id, bulletin.school_class_id, bulletin.academic_year)
            average = compute_weighted_average(subjects, term)
            rank = compute_class_rank(average, ranking.per_student.values()) if average is not None else None
        else:
            average = ranking.per_student[bulletin.student_id]
            rank = ranking.rank_of(bulletin.student_id)

        validation = validate_term_requirements(subjects, term)
        if not self.policy.allows_gaps(term) and (average is None or not validation.valid):
            raise ValidationIncomplete(validation.missing_subjects, term=term)

        if not validation.valid:
            logger.warning(
                "Bulletin %s submitted with missing grades (%s): %s",
                bulletin.pk, term, ", ".join(validation.missing_subjects),
            )

        bulletin.subject_snapshot = [s.to_dict() for s in subjects]
        bulletin.general_average = _as_decimal(average)
        bulletin.class_rank = rank
        bulletin.total_students_in_class = len(class_grades)

        bulletin.annual_average = None
        bulletin.council_decision = ""
        bulletin.mention = ""
        if term == Term.T3:
            annual = compute_weighted_average(subjects, Scope.ANNUAL)
            bulletin.annual_average = _as_decimal(annual)
            if annual is not None:
                term_averages = [compute_weighted_average(subjects, t) for t in (Scope.T1, Scope.T2, Scope.T3)]
                decision = determine_council_decision(annual, term_averages)
                bulletin.council_decision = decision.decision
                bulletin.mention = decision.mention

    def submit(self, bulletin_id, actor) -> Bulletin:
        self._check_role(actor, "submit")

        def apply(bulletin):
            self._compute(bulletin)
            bulletin.submitted_by = actor
            bulletin.submitted_at = timezone.now()

        bulletin, _ = self._transition(
            bulletin_id, "submit", actor,
            allowed_from=(BulletinStatus.DRAFT, BulletinStatus.REJECTED),
            target=BulletinStatus.SUBMITTED,
            apply=apply,
        )
        return bulletin

    # ---- décision du directeur ----
    def approve(self, bulletin_id, actor, comment: str = "") -> Bulletin:
        self._check_role(actor, "approve")

        def apply(bulletin):
            if self.policy.require_complete_for_approval:
                validation = validate_term_requirements(bulletin.subjects(), bulletin.term)
                if bulletin.general_average is None or not validation.valid:
                    raise ValidationIncomplete(validation.missing_subjects, term=bulletin.term)
            now = timezone.now()
            bulletin.approved_by = actor
            bulletin.approved_at = now
            bulletin.grades_frozen_at = now
            bulletin.last_approval_comment = comment or ""

        bulletin, changed = self._transition(
            bulletin_id, "approve", actor,
            allowed_from=(BulletinStatus.SUBMITTED,),
            target=BulletinStatus.APPROVED,
            apply=apply,
            comment=comment,
        )
        if changed:
            self.document_store.put(bulletin.pk, build_document_data(bulletin))
        return bulletin

    def reject(self, bulletin_id, actor, comment: str) -> Bulletin:
        self._check_role(actor, "reject")
        if not (comment or "").strip():
            raise ValidationError({"comment": "Un commentaire est obligatoire pour rejeter un bulletin."})

        def apply(bulletin):
            bulletin.rejected_at = timezone.now()
            bulletin.last_approval_comment = comment.strip()

        bulletin, _ = self._transition(
            bulletin_id, "reject", actor,
            allowed_from=(BulletinStatus.SUBMITTED,),
            target=BulletinStatus.REJECTED,
            apply=apply,
            comment=comment.strip(),
        )
        return bulletin

    def reopen(self, bulletin_id, actor) -> Bulletin:
        self._check_role(actor, "reopen")
        bulletin, _ = self._transition(
            bulletin_id, "reopen", actor,
            allowed_from=(BulletinStatus.REJECTED,),
            target=BulletinStatus.DRAFT,
        )
        return bulletin

    # ---- publication ----
    def publish(self, bulletin_id, actor=None) -> Bulletin:
        self._check_role(actor, "publish")

        with transaction.atomic():
            current = Bulletin.objects.select_for_update().only("status").get(pk=_pk(bulletin_id))
            if current.status in (BulletinStatus.PUBLISHED, BulletinStatus.SENT):
                # idempotent : ni erreur ni nouvel horodatage
                return Bulletin.objects.get(pk=current.pk)

            def apply(bulletin):
                bulletin.published_at = timezone.now()

            bulletin, _ = self._transition(
                current.pk, "publish", actor,
                allowed_from=(BulletinStatus.APPROVED,),
                target=BulletinStatus.PUBLISHED,
                apply=apply,
            )
        self.document_store.evict(bulletin.pk)
        return bulletin

    def publish_class(self, class_id, term, academic_year, actor=None) -> ClassPublication:
        self._check_role(actor, "publish")
        report = ClassPublication()
        bulletins = Bulletin.objects.filter(
            school_class_id=class_id, term=Term(term), academic_year=academic_year
        ).order_by("pk").values_list("pk", "status")

        for pk, status in bulletins:
            if status in (BulletinStatus.PUBLISHED, BulletinStatus.SENT):
                report.already_published.append(pk)
            elif status != BulletinStatus.APPROVED:
                report.not_ready[pk] = status
            else:
                try:
                    self.publish(pk, actor)
                except InvalidTransition as exc:
                    # statut modifié entre la lecture et le verrou
                    report.not_ready[pk] = exc.current_state
                else:
                    report.published.append(pk)

        logger.info(
            "Class %s %s %s: %d published, %d already published, %d not ready",
            class_id, term, academic_year,
            len(report.published), len(report.already_published), len(report.not_ready),
        )
        return report

    # ---- envoi ----
    def mark_sent(self, bulletin_id, batch_result, primary_recipient_id, actor=None) -> bool:
        """
        published -> sent si le destinataire principal a reçu au moins une
        notification. Sinon le bulletin reste publié (relance possible) et
        la méthode retourne False.
        """
        self._check_role(actor, "mark_sent")

        with transaction.atomic():
            bulletin = Bulletin.objects.select_for_update().get(pk=_pk(bulletin_id))
            if bulletin.status not in (BulletinStatus.PUBLISHED, BulletinStatus.SENT):
                raise InvalidTransition(bulletin.status, "send")

            if primary_recipient_id is None or not batch_result.delivered_to(primary_recipient_id):
                logger.warning(
                    "Bulletin %s: no delivery to primary recipient %s, stays %s",
                    bulletin.pk, primary_recipient_id, bulletin.status,
                )
                return False

            previous = bulletin.status
            bulletin.status = BulletinStatus.SENT
            bulletin.sent_at = timezone.now()
            bulletin.version += 1
            bulletin.save(update_fields=["status", "sent_at", "version", "updated_at"])
            BulletinTransition.objects.create(
                bulletin=bulletin,
                actor=actor,
                from_status=previous,
                to_status=BulletinStatus.SENT,
                comment="re-send" if previous == BulletinStatus.SENT else "",
            )

        logger.info("Bulletin %s marked sent (%s)", bulletin.pk, previous)
        return True
