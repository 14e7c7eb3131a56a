# bulletins/tests.py
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import caches
from django.core.exceptions import PermissionDenied, ValidationError
from django.test import TestCase

from academics.models import ClassSubject, Grade, Level, SchoolClass, Subject
from bulletins.exceptions import IdempotencyConflict, InvalidTransition, ValidationIncomplete
from bulletins.models import Bulletin, BulletinSignature, BulletinStatus, BulletinTransition
from bulletins.services.distribution import BulletinDistributor, notice_for
from bulletins.services.documents import CacheDocumentStore, build_document_data, get_document_data
from bulletins.services.lifecycle import BulletinLifecycle, SubmissionPolicy, actor_role
from bulletins.services.signing import bulk_sign, sign_bulletin, verify_signature
from core.models import Parent, Student, Teacher
from notifications.delivery import NotificationDispatcher
from notifications.ledger import InMemoryDeliveryLedger
from notifications.messages import TemplateCatalog
from notifications.providers import ChannelProvider, ProviderError
from notifications.results import NotificationBatchResult, NotificationResult

User = get_user_model()


class BulletinTestMixin:
    year = "2025-2026"

    def setUp(self):
        caches["default"].clear()
        level = Level.objects.create(name="6e")
        self.school_class = SchoolClass.objects.create(name="6e A", level=level)
        self.math = Subject.objects.create(name="Mathématiques")
        self.physics = Subject.objects.create(name="Physique")
        ClassSubject.objects.create(school_class=self.school_class, subject=self.math, coefficient=4)
        ClassSubject.objects.create(school_class=self.school_class, subject=self.physics, coefficient=3)

        self.director = User.objects.create_user("directeur", is_staff=True)
        self.teacher_user = User.objects.create_user("prof", first_name="Jean", last_name="Dossou")
        Teacher.objects.create(user=self.teacher_user)

        self.ama = self._student("ama", "Ama", "Koffi", phone="97000001")
        self.kofi = self._student("kofi", "Kofi", "Mensah", phone="97000002")
        self.yao = self._student("yao", "Yao", "Agbo", phone="97000003")

        self.store = CacheDocumentStore()
        self.lifecycle = BulletinLifecycle(
            policy=SubmissionPolicy(allow_gaps={"T1": True, "T2": True, "T3": False}),
            document_store=self.store,
        )

    def _student(self, username, first, last, phone=None):
        parent_user = User.objects.create_user(f"parent_{username}", first_name="Parent", last_name=last)
        parent = Parent.objects.create(user=parent_user, phone=phone)
        user = User.objects.create_user(username, first_name=first, last_name=last)
        return Student.objects.create(user=user, school_class=self.school_class, parent=parent)

    def _grade(self, student, subject, term, score):
        Grade.objects.create(
            student=student, subject=subject, term=term, academic_year=self.year, devoir1=Decimal(str(score)),
        )

    def _draft(self, student, term="T1"):
        return self.lifecycle.create_draft(student, term, self.year, self.teacher_user)

    def _approved(self, student, term="T1"):
        bulletin = self._draft(student, term)
        self.lifecycle.submit(bulletin.pk, self.teacher_user)
        return self.lifecycle.approve(bulletin.pk, self.director)

    def _published(self, student, term="T1"):
        bulletin = self._approved(student, term)
        return self.lifecycle.publish(bulletin.pk, self.director)


class ActorRoleTest(BulletinTestMixin, TestCase):
    def test_roles(self):
        self.assertEqual(actor_role(None), "system")
        self.assertEqual(actor_role(self.director), "director")
        self.assertEqual(actor_role(self.teacher_user), "teacher")
        self.assertEqual(actor_role(self.ama.parent.user), "parent")


class SubmitTest(BulletinTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self._grade(self.ama, self.math, "T1", 16)
        self._grade(self.kofi, self.math, "T1", 12)
        self._grade(self.kofi, self.physics, "T1", 14)
        self._grade(self.yao, self.math, "T1", 18)
        self._grade(self.yao, self.physics, "T1", 18)

    def test_create_draft_is_idempotent(self):
        first = self._draft(self.ama)
        second = self._draft(self.ama)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(first.status, BulletinStatus.DRAFT)
        self.assertEqual(first.school_class, self.school_class)

    def test_parent_cannot_create_draft(self):
        with self.assertRaises(PermissionDenied):
            self.lifecycle.create_draft(self.ama, "T1", self.year, self.ama.parent.user)

    def test_submit_computes_average_rank_and_snapshot(self):
        bulletin = self.lifecycle.submit(self._draft(self.ama).pk, self.teacher_user)

        self.assertEqual(bulletin.status, BulletinStatus.SUBMITTED)
        # Physique sans note : exclue, pas comptée zéro
        self.assertEqual(bulletin.general_average, Decimal("16.00"))
        self.assertEqual(bulletin.class_rank, 2)
        self.assertEqual(bulletin.total_students_in_class, 3)
        self.assertEqual(bulletin.submitted_by, self.teacher_user)
        self.assertIsNotNone(bulletin.submitted_at)
        self.assertEqual(bulletin.version, 1)
        self.assertEqual(len(bulletin.subjects()), 2)
        self.assertEqual(bulletin.council_decision, "")

        history = list(bulletin.history.values_list("from_status", "to_status"))
        self.assertEqual(history, [("draft", "submitted")])

    def test_snapshot_ignores_later_grade_edits(self):
        bulletin = self.lifecycle.submit(self._draft(self.ama).pk, self.teacher_user)
        Grade.objects.filter(student=self.ama, subject=self.math).update(average_subject=Decimal("5"))

        bulletin.refresh_from_db()
        maths = [s for s in bulletin.subjects() if s.subject_name == "Mathématiques"][0]
        self.assertEqual(maths.t1, Decimal("16"))
        self.assertEqual(bulletin.general_average, Decimal("16.00"))

    def test_submit_with_gaps_allowed_for_t1(self):
        pupil = self._student("sena", "Sena", "Houngbo")
        bulletin = self.lifecycle.submit(self._draft(pupil).pk, self.teacher_user)
        self.assertEqual(bulletin.status, BulletinStatus.SUBMITTED)
        self.assertIsNone(bulletin.general_average)
        self.assertIsNone(bulletin.class_rank)

    def test_submit_twice_is_noop(self):
        draft = self._draft(self.ama)
        self.lifecycle.submit(draft.pk, self.teacher_user)
        again = self.lifecycle.submit(draft.pk, self.teacher_user)
        self.assertEqual(again.status, BulletinStatus.SUBMITTED)
        self.assertEqual(again.version, 1)
        self.assertEqual(BulletinTransition.objects.filter(bulletin=draft).count(), 1)

    def test_gap_policy_blocks_t3_before_any_mutation(self):
        self._grade(self.ama, self.math, "T3", 14)
        draft = self._draft(self.ama, "T3")

        with self.assertRaises(ValidationIncomplete) as ctx:
            self.lifecycle.submit(draft.pk, self.teacher_user)
        self.assertEqual(ctx.exception.missing_subjects, ["Physique"])

        draft.refresh_from_db()
        self.assertEqual(draft.status, BulletinStatus.DRAFT)
        self.assertEqual(draft.version, 0)
        self.assertEqual(draft.subject_snapshot, [])
        self.assertFalse(draft.history.exists())

    def test_t3_gap_rule_is_a_policy_choice(self):
        # moyenne calculable (Maths seule) : seule la politique décide
        self._grade(self.ama, self.math, "T3", 14)
        draft = self._draft(self.ama, "T3")
        lenient = BulletinLifecycle(
            policy=SubmissionPolicy(allow_gaps={"T1": True, "T2": True, "T3": True}),
            document_store=self.store,
        )

        bulletin = lenient.submit(draft.pk, self.teacher_user)
        self.assertEqual(bulletin.status, BulletinStatus.SUBMITTED)
        self.assertEqual(bulletin.general_average, Decimal("14.00"))

    def test_t3_council_decision(self):
        for term, math, physics in (("T2", 15, 13), ("T3", 14, 11)):
            self._grade(self.ama, self.math, term, math)
            self._grade(self.ama, self.physics, term, physics)
        self._grade(self.ama, self.physics, "T1", 12)

        bulletin = self.lifecycle.submit(self._draft(self.ama, "T3").pk, self.teacher_user)

        self.assertEqual(bulletin.general_average, Decimal("12.71"))
        # Maths 15, Physique 12 -> (60 + 36) / 7
        self.assertEqual(bulletin.annual_average, Decimal("13.71"))
        self.assertEqual(bulletin.council_decision, "promote")
        self.assertEqual(bulletin.mention, "fair")


class ApprovalTest(BulletinTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self._grade(self.ama, self.math, "T1", 16)
        self.bulletin = self._draft(self.ama)
        self.lifecycle.submit(self.bulletin.pk, self.teacher_user)

    def test_teacher_cannot_approve(self):
        with self.assertRaises(PermissionDenied):
            self.lifecycle.approve(self.bulletin.pk, self.teacher_user)
        self.bulletin.refresh_from_db()
        self.assertEqual(self.bulletin.status, BulletinStatus.SUBMITTED)

    def test_approve_freezes_and_stores_document(self):
        bulletin = self.lifecycle.approve(self.bulletin.pk, self.director, comment="RAS")
        self.assertEqual(bulletin.status, BulletinStatus.APPROVED)
        self.assertEqual(bulletin.approved_by, self.director)
        self.assertIsNotNone(bulletin.approved_at)
        self.assertTrue(bulletin.is_frozen)
        self.assertEqual(bulletin.last_approval_comment, "RAS")

        data = self.store.get(bulletin.pk)
        self.assertIsNotNone(data)
        self.assertEqual(data.general_average, 16.0)
        self.assertEqual(data.period["term"], "T1")
        self.assertEqual(data.student["first_name"], "Ama")

    def test_require_complete_for_approval(self):
        strict = BulletinLifecycle(
            policy=SubmissionPolicy(allow_gaps={"T1": True}, require_complete_for_approval=True),
            document_store=self.store,
        )
        with self.assertRaises(ValidationIncomplete) as ctx:
            strict.approve(self.bulletin.pk, self.director)
        self.assertEqual(ctx.exception.missing_subjects, ["Physique"])
        self.bulletin.refresh_from_db()
        self.assertEqual(self.bulletin.status, BulletinStatus.SUBMITTED)

    def test_reject_requires_comment(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.reject(self.bulletin.pk, self.director, comment="")
        with self.assertRaises(ValidationError):
            self.lifecycle.reject(self.bulletin.pk, self.director, comment="   ")

        self.bulletin.refresh_from_db()
        self.assertEqual(self.bulletin.status, BulletinStatus.SUBMITTED)
        self.assertEqual(self.bulletin.version, 1)

    def test_reject_then_resubmit(self):
        rejected = self.lifecycle.reject(self.bulletin.pk, self.director, comment="Notes de physique manquantes")
        self.assertEqual(rejected.status, BulletinStatus.REJECTED)
        self.assertEqual(rejected.last_approval_comment, "Notes de physique manquantes")
        self.assertIsNotNone(rejected.rejected_at)

        self._grade(self.ama, self.physics, "T1", 9)
        resubmitted = self.lifecycle.submit(self.bulletin.pk, self.teacher_user)
        self.assertEqual(resubmitted.status, BulletinStatus.SUBMITTED)
        # (64 + 27) / 7 = 13
        self.assertEqual(resubmitted.general_average, Decimal("13.00"))

    def test_reopen_rejected(self):
        self.lifecycle.reject(self.bulletin.pk, self.director, comment="À revoir")
        bulletin = self.lifecycle.reopen(self.bulletin.pk, self.teacher_user)
        self.assertEqual(bulletin.status, BulletinStatus.DRAFT)

    def test_invalid_transition_does_not_mutate(self):
        with self.assertRaises(InvalidTransition) as ctx:
            self.lifecycle.publish(self.bulletin.pk, self.director)
        self.assertEqual(ctx.exception.current_state, BulletinStatus.SUBMITTED)
        self.assertEqual(ctx.exception.requested_transition, "publish")

        with self.assertRaises(InvalidTransition):
            self.lifecycle.reopen(self.bulletin.pk, self.teacher_user)

        self.bulletin.refresh_from_db()
        self.assertEqual(self.bulletin.status, BulletinStatus.SUBMITTED)
        self.assertIsNone(self.bulletin.published_at)


class PublishTest(BulletinTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self._grade(self.ama, self.math, "T1", 16)
        self._grade(self.kofi, self.math, "T1", 12)

    def test_publish_is_idempotent(self):
        bulletin = self._approved(self.ama)
        first = self.lifecycle.publish(bulletin.pk, self.director)
        second = self.lifecycle.publish(bulletin.pk)

        self.assertEqual(first.status, BulletinStatus.PUBLISHED)
        self.assertEqual(second.status, BulletinStatus.PUBLISHED)
        self.assertEqual(first.published_at, second.published_at)
        self.assertEqual(first.version, second.version)
        self.assertEqual(BulletinTransition.objects.filter(bulletin=bulletin, to_status="published").count(), 1)

    def test_publish_evicts_document(self):
        bulletin = self._approved(self.ama)
        self.assertIsNotNone(self.store.get(bulletin.pk))
        self.lifecycle.publish(bulletin.pk)
        self.assertIsNone(self.store.get(bulletin.pk))

        # relecture à travers le store
        bulletin.refresh_from_db()
        data = get_document_data(bulletin, self.store)
        self.assertEqual(data.class_rank, 1)
        self.assertIsNotNone(self.store.get(bulletin.pk))

    def test_publish_class(self):
        approved = self._approved(self.ama)
        published = self._published(self.kofi)
        draft = self._draft(self.yao)

        report = self.lifecycle.publish_class(self.school_class.pk, "T1", self.year)
        self.assertEqual(report.published, [approved.pk])
        self.assertEqual(report.already_published, [published.pk])
        self.assertEqual(report.not_ready, {draft.pk: "draft"})

    def test_no_document_for_draft(self):
        with self.assertRaises(InvalidTransition):
            build_document_data(self._draft(self.yao))

    def test_mark_sent_requires_primary_delivery(self):
        bulletin = self._published(self.ama)
        parent_id = str(self.ama.parent.pk)
        failed = NotificationBatchResult.from_results([
            NotificationResult(str(bulletin.pk), "sms", parent_id, False, error="provider down"),
            NotificationResult(str(bulletin.pk), "sms", str(self.ama.pk), True),
        ])
        self.assertFalse(self.lifecycle.mark_sent(bulletin.pk, failed, parent_id))
        bulletin.refresh_from_db()
        self.assertEqual(bulletin.status, BulletinStatus.PUBLISHED)

        ok = NotificationBatchResult.from_results([NotificationResult(str(bulletin.pk), "email", parent_id, True)])
        self.assertTrue(self.lifecycle.mark_sent(bulletin.pk, ok, parent_id))
        bulletin.refresh_from_db()
        self.assertEqual(bulletin.status, BulletinStatus.SENT)
        self.assertIsNotNone(bulletin.sent_at)

        # re-envoi toléré
        self.assertTrue(self.lifecycle.mark_sent(bulletin.pk, ok, parent_id))

    def test_mark_sent_before_publish(self):
        bulletin = self._approved(self.ama)
        ok = NotificationBatchResult.from_results([NotificationResult(str(bulletin.pk), "sms", "P1", True)])
        with self.assertRaises(InvalidTransition):
            self.lifecycle.mark_sent(bulletin.pk, ok, "P1")


class SigningTest(BulletinTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self._grade(self.ama, self.math, "T1", 16)
        self._grade(self.kofi, self.math, "T1", 12)
        self.b1 = self._approved(self.ama)
        self.b2 = self._approved(self.kofi)
        self.b3 = self._draft(self.yao)

    def test_bulk_sign_is_skip_safe(self):
        first = bulk_sign(self.school_class.pk, "M. Directeur", "Directeur", has_stamp=True)
        self.assertEqual(first.signed_count, 2)
        self.assertEqual(sorted(first.signed), sorted([self.b1.pk, self.b2.pk]))
        self.assertEqual(first.skipped, [{"bulletin_id": self.b3.pk, "status": "draft"}])
        self.assertEqual(first.failures, [])

        second = bulk_sign(self.school_class.pk, "M. Directeur", "Directeur", has_stamp=True)
        self.assertEqual(second.signed_count, 0)
        self.assertEqual(sorted(second.already_signed), sorted([self.b1.pk, self.b2.pk]))
        self.assertEqual(BulletinSignature.objects.count(), 2)

    def test_other_signer_signs_again(self):
        bulk_sign(self.school_class.pk, "M. Directeur", "Directeur")
        summary = bulk_sign(self.school_class.pk, "Mme Censeur", "Censeur", term="T1", academic_year=self.year)
        self.assertEqual(summary.signed_count, 2)
        self.assertEqual(BulletinSignature.objects.filter(bulletin=self.b1).count(), 2)

    def test_sign_twice_conflicts(self):
        sign_bulletin(self.b1, "M. Directeur", "Directeur")
        with self.assertRaises(IdempotencyConflict):
            sign_bulletin(self.b1, "M. Directeur", "Directeur")

    def test_verify_signature(self):
        signature = sign_bulletin(self.b1, "M. Directeur", "Directeur", has_stamp=True)
        self.assertEqual(len(signature.signature_hash), 64)
        self.assertEqual(len(signature.verification_code), 32)

        result = verify_signature(signature.verification_code)
        self.assertTrue(result.valid)
        self.assertEqual(result.bulletin_id, self.b1.pk)

        Bulletin.objects.filter(pk=self.b1.pk).update(general_average=Decimal("19.00"))
        tampered = verify_signature(signature.verification_code)
        self.assertFalse(tampered.valid)
        self.assertEqual(tampered.reason, "content-modified")

        self.assertEqual(verify_signature("0" * 32).reason, "unknown-code")

    def test_signatures_in_document(self):
        sign_bulletin(self.b1, "M. Directeur", "Directeur", has_stamp=True)
        self.b1.refresh_from_db()
        data = build_document_data(self.b1)
        self.assertEqual(data.signatures[0]["signer_name"], "M. Directeur")
        self.assertTrue(data.signatures[0]["has_stamp"])

    def test_cached_document_shows_new_signatures(self):
        # mis en cache à l'approbation, sans signature
        self.assertEqual(get_document_data(self.b1, self.store).signatures, [])

        bulk_sign(self.school_class.pk, "M. Directeur", "Directeur", has_stamp=True, document_store=self.store)
        self.b1.refresh_from_db()
        data = get_document_data(self.b1, self.store)
        self.assertEqual(len(data.signatures), 1)
        self.assertTrue(data.signatures[0]["has_stamp"])

        # store par défaut : même cache
        sign_bulletin(self.b1, "Mme Censeur", "Censeur")
        self.b1.refresh_from_db()
        self.assertEqual(
            [s["signer_name"] for s in get_document_data(self.b1, self.store).signatures],
            ["M. Directeur", "Mme Censeur"],
        )


class RecordingProvider(ChannelProvider):
    def __init__(self, channel, fail=False):
        self.channel = channel
        self.fail = fail
        self.sent = []

    def send(self, to, message, timeout):
        if self.fail:
            raise ProviderError("gateway unavailable")
        self.sent.append((to, message.body))
        return "ok"


class DistributionTest(BulletinTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self._grade(self.ama, self.math, "T1", 17)
        self.bulletin = self._published(self.ama)

    def _distributor(self, provider):
        dispatcher = NotificationDispatcher(
            providers={"sms": provider},
            ledger=InMemoryDeliveryLedger(),
            catalog=TemplateCatalog(),
            max_workers=2,
        )
        return BulletinDistributor(dispatcher=dispatcher, lifecycle=self.lifecycle)

    def test_notice(self):
        notice = notice_for(self.bulletin)
        self.assertEqual(notice.bulletin_id, str(self.bulletin.pk))
        self.assertEqual(notice.general_average, 17.0)
        self.assertEqual(notice.tier, "excellent")
        self.assertEqual(notice.student_name, "Ama Koffi")

    def test_distribute_marks_sent(self):
        provider = RecordingProvider("sms")
        result = self._distributor(provider).distribute(self.bulletin, ["sms"])

        self.assertEqual(result.successful_sms, 1)
        self.assertEqual(provider.sent[0][0], "+22997000001")
        self.assertIn("17.00/20", provider.sent[0][1])
        self.bulletin.refresh_from_db()
        self.assertEqual(self.bulletin.status, BulletinStatus.SENT)

    def test_failed_distribution_stays_published_then_retry(self):
        provider = RecordingProvider("sms", fail=True)
        distributor = self._distributor(provider)
        result = distributor.distribute(self.bulletin, ["sms"])

        self.assertEqual(result.failed, 1)
        self.bulletin.refresh_from_db()
        self.assertEqual(self.bulletin.status, BulletinStatus.PUBLISHED)

        provider.fail = False
        retried = distributor.retry(self.bulletin, result)
        self.assertEqual(retried.successful_sms, 1)
        self.bulletin.refresh_from_db()
        self.assertEqual(self.bulletin.status, BulletinStatus.SENT)

    def test_distribute_many(self):
        self._grade(self.kofi, self.math, "T1", 8)
        other = self._published(self.kofi)
        draft = self._draft(self.yao)

        provider = RecordingProvider("sms")
        summary = self._distributor(provider).distribute_many([self.bulletin, other, draft], ["sms"])

        self.assertEqual(summary.processed, 2)
        self.assertEqual(summary.successful, 2)
        self.assertEqual(summary.for_bulletin(other.pk).successful_sms, 1)
        other.refresh_from_db()
        self.assertEqual(other.status, BulletinStatus.SENT)

    def test_cannot_distribute_unpublished(self):
        draft = self._draft(self.yao)
        with self.assertRaises(InvalidTransition):
            self._distributor(RecordingProvider("sms")).distribute(draft, ["sms"])
