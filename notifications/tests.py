# notifications/tests.py
import threading
from io import StringIO
from unittest import mock

import requests
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings

from academics.models import Level, SchoolClass
from core.models import Parent, Student
from notifications.delivery import DispatchConfigurationError, NotificationDispatcher
from notifications.ledger import DeliveryLedger, InMemoryDeliveryLedger, OrmDeliveryLedger, idempotency_key
from notifications.messages import (
    BulletinNotice, DatabaseTemplateCatalog, RenderedMessage, TemplateCatalog, resolve_language, select_tier,
)
from notifications.models import NotificationDelivery, NotificationTemplate, UserDevice
from notifications.providers import (
    ChannelProvider, ConsoleProvider, EmailProvider, HttpPushProvider, HttpSmsProvider, InvalidAddress,
    ProviderError, WhatsAppCloudProvider, build_providers,
)
from notifications.recipients import NotificationRecipient, primary_recipient, recipients_for_student
from notifications.results import NotificationBatchResult, NotificationResult
from notifications.serializers import NotificationRecipientSerializer, NotificationTemplateSerializer
from notifications.utils import normalize_phone_number

User = get_user_model()

NOTICE = BulletinNotice(
    bulletin_id="42",
    student_name="Ama Koffi",
    class_name="6e A",
    term="T1",
    term_label="1er trimestre",
    academic_year="2025-2026",
    general_average=14.5,
    class_rank=3,
    total_students=30,
    school_name="CEG Le Plateau",
    school_contact="+22921000000",
)


def recipient(rid, phone=None, email=None, whatsapp=None, language=None, role="parent"):
    return NotificationRecipient(
        id=rid, display_name=f"Parent {rid}", role=role,
        email=email, phone=phone, whatsapp=whatsapp, preferred_language=language,
    )


class FakeProvider(ChannelProvider):
    """Enregistre les envois ; lève ``error`` pour les adresses de ``fail_for``."""

    def __init__(self, channel, fail_for=(), error=None):
        self.channel = channel
        self.fail_for = list(fail_for)
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def send(self, to, message, timeout):
        with self._lock:
            self.calls.append((to, message))
        if any(to == f for f in self.fail_for):
            raise self.error or ProviderError("provider down")
        return "ok"


class DispatcherTest(SimpleTestCase):
    def setUp(self):
        self.sms = FakeProvider("sms", fail_for=["+22997000002"])
        self.email = FakeProvider("email")
        self.ledger = InMemoryDeliveryLedger()
        self.recipients = [
            recipient("R1", phone="+22997000001", email="r1@example.com"),
            recipient("R2", phone="+22997000002", email="r2@example.com"),
            recipient("R3", phone="+22997000003", email="r3@example.com"),
        ]

    def dispatcher(self, **kwargs):
        options = {
            "providers": {"sms": self.sms, "email": self.email},
            "ledger": self.ledger,
            "catalog": TemplateCatalog(),
            "max_workers": 4,
        }
        options.update(kwargs)
        return NotificationDispatcher(**options)

    def test_one_failure_does_not_abort_siblings(self):
        result = self.dispatcher().dispatch(NOTICE, self.recipients, ["sms", "email"])

        self.assertEqual(result.successful_sms, 2)
        self.assertEqual(result.successful_email, 3)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.failed_pairs(), [("R2", "sms")])

        report = result.per_recipient()
        self.assertEqual(set(report), {"R1", "R2", "R3"})
        self.assertTrue(report["R1"]["sms"].success)
        self.assertTrue(report["R3"]["email"].success)
        self.assertEqual(report["R2"]["sms"].error, "provider down")
        self.assertTrue(report["R2"]["email"].success)
        self.assertEqual(result.success_rate, round(5 / 6, 4))

    def test_missing_contact_is_skipped_not_failed(self):
        recipients = [recipient("R1", phone="+22997000001"), recipient("R4", email="r4@example.com")]
        result = self.dispatcher().dispatch(NOTICE, recipients, ["sms", "email"])

        self.assertEqual(result.failed, 0)
        self.assertEqual(result.attempted, 2)
        self.assertEqual(
            {(s.recipient_id, s.channel, s.reason) for s in result.skipped},
            {("R1", "email", "no-contact"), ("R4", "sms", "no-contact")},
        )

    def test_retried_batch_does_not_double_send(self):
        dispatcher = self.dispatcher()
        dispatcher.dispatch(NOTICE, self.recipients, ["email"])
        again = dispatcher.dispatch(NOTICE, self.recipients, ["email"])

        self.assertEqual(len(self.email.calls), 3)
        self.assertEqual(again.attempted, 0)
        self.assertEqual({s.reason for s in again.skipped}, {"already-sent"})
        self.assertTrue(again.delivered_to("R1"))
        self.assertTrue(self.ledger.has_succeeded(idempotency_key("42", "R2", "email")))

    def test_retry_failed_only_resends_failed_pairs(self):
        dispatcher = self.dispatcher()
        first = dispatcher.dispatch(NOTICE, self.recipients, ["sms", "email"])
        self.sms.fail_for = []
        sms_calls, email_calls = len(self.sms.calls), len(self.email.calls)

        retry = dispatcher.retry_failed(NOTICE, self.recipients, first)

        self.assertEqual(len(self.sms.calls), sms_calls + 1)
        self.assertEqual(len(self.email.calls), email_calls)
        self.assertEqual(self.sms.calls[-1][0], "+22997000002")
        self.assertEqual(retry.successful_sms, 1)
        self.assertEqual(retry.failed, 0)

    def test_retry_with_nothing_failed(self):
        dispatcher = self.dispatcher()
        first = dispatcher.dispatch(NOTICE, self.recipients, ["email"])
        retry = dispatcher.retry_failed(NOTICE, self.recipients, first)
        self.assertEqual(retry.attempted, 0)
        self.assertEqual(retry.bulletin_id, "42")

    def test_provider_timeout(self):
        self.sms.error = requests.Timeout("read timed out")
        result = self.dispatcher().dispatch(NOTICE, self.recipients, ["sms"])
        self.assertEqual(result.per_recipient()["R2"]["sms"].error, "timeout")

    def test_batch_deadline(self):
        release = threading.Event()

        class Hanging(ChannelProvider):
            def send(self, to, message, timeout):
                release.wait(5)
                return "late"

        try:
            result = self.dispatcher(providers={"sms": Hanging()}, batch_timeout=0.2).dispatch(
                NOTICE, self.recipients[:1], ["sms"],
            )
        finally:
            release.set()
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.results[0].error, "timeout")

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        result = self.dispatcher().dispatch(NOTICE, self.recipients, ["sms"], cancel_event=cancel)
        self.assertEqual(self.sms.calls, [])
        self.assertEqual(result.failed, 3)
        self.assertEqual({r.error for r in result.results}, {"cancelled"})

    def test_configuration_errors(self):
        with self.assertRaises(DispatchConfigurationError):
            self.dispatcher().dispatch(NOTICE, self.recipients, [])
        with self.assertRaises(DispatchConfigurationError):
            self.dispatcher().dispatch(NOTICE, self.recipients, ["fax"])
        with self.assertRaises(DispatchConfigurationError):
            self.dispatcher(providers={}).dispatch(NOTICE, self.recipients, ["sms"])

    def test_requested_channel_without_provider_fails_per_attempt(self):
        recipients = [recipient("R1", phone="+22997000001", whatsapp="+22997000001")]
        result = self.dispatcher().dispatch(NOTICE, recipients, ["sms", "whatsapp"])
        self.assertEqual(result.successful_sms, 1)
        self.assertEqual(result.per_recipient()["R1"]["whatsapp"].error, "no-provider")

    def test_message_language(self):
        recipients = [
            recipient("R1", phone="+22997000001", language="en"),
            recipient("R2", phone="+22997000004"),
        ]
        self.dispatcher().dispatch(NOTICE, recipients, ["sms"])
        bodies = {to: message.body for to, message in self.sms.calls}
        self.assertIn("Report card for Ama Koffi", bodies["+22997000001"])
        self.assertIn("Bulletin de Ama Koffi", bodies["+22997000004"])
        self.assertIn("14.50/20", bodies["+22997000004"])

    def test_send_bulk(self):
        other = BulletinNotice(
            bulletin_id="43", student_name="Kofi Mensah", class_name="6e A", term="T1",
            term_label="1er trimestre", academic_year="2025-2026", general_average=None,
        )
        summary = self.dispatcher().send_bulk(
            [
                (NOTICE, self.recipients),
                (other, [recipient("R9", phone="+22997000002")]),
            ],
            ["sms"],
        )
        self.assertEqual(summary.processed, 2)
        self.assertEqual(summary.successful, 1)
        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.for_bulletin("42").successful_sms, 2)
        self.assertEqual(summary.for_bulletin("43").failed, 1)

    def test_send_bulk_continues_after_unexpected_error(self):
        class BrokenCatalog(TemplateCatalog):
            def render(self, notice, recipient, channel, language):
                if notice.bulletin_id == "42":
                    raise RuntimeError("template store unavailable")
                return super().render(notice, recipient, channel, language)

        other = BulletinNotice(
            bulletin_id="43", student_name="Kofi Mensah", class_name="6e A", term="T1",
            term_label="1er trimestre", academic_year="2025-2026",
        )
        summary = self.dispatcher(catalog=BrokenCatalog()).send_bulk(
            [(NOTICE, self.recipients), (other, [recipient("R9", phone="+22997000009")])],
            ["sms"],
        )
        self.assertEqual(summary.processed, 2)
        self.assertEqual(summary.successful, 1)
        self.assertIn("42", summary.errors)


class MessagesTest(SimpleTestCase):
    def test_tiers(self):
        self.assertEqual(select_tier(16), "excellent")
        self.assertEqual(select_tier(15.99), "standard")
        self.assertEqual(select_tier(10), "standard")
        self.assertEqual(select_tier(9.99), "needs_improvement")
        self.assertEqual(select_tier(None), "standard")

    def test_language_fallback(self):
        self.assertEqual(resolve_language(recipient("R1", language="en"), "fr"), "en")
        self.assertEqual(resolve_language(recipient("R1"), "en"), "en")
        self.assertEqual(resolve_language(recipient("R1")), "fr")

    def test_plain_text_is_not_escaped(self):
        notice = BulletinNotice(
            bulletin_id="1", student_name="Aïcha N'Diaye", class_name="CM2", term="T2",
            term_label="2e trimestre", academic_year="2025-2026", general_average=17,
        )
        message = TemplateCatalog().render(notice, recipient("R1"), "sms", "fr")
        self.assertIn("Aïcha N'Diaye", message.body)
        self.assertIn("Excellents résultats", message.body)

    def test_email_has_html_and_text(self):
        message = TemplateCatalog().render(NOTICE, recipient("R1"), "email", "fr")
        self.assertEqual(message.subject, "Bulletin scolaire de Ama Koffi - 1er trimestre 2025-2026")
        self.assertIn("<strong>Ama Koffi</strong>", message.html)
        self.assertNotIn("<", message.body)

    def test_batch_result_fold(self):
        result = NotificationBatchResult.from_results([
            NotificationResult("1", "whatsapp", "R2", True),
            NotificationResult("1", "sms", "R1", False, error="x"),
            NotificationResult("1", "push", "R1", True),
        ])
        self.assertEqual(result.successful_whatsapp, 1)
        self.assertEqual(result.successful_push, 1)
        self.assertEqual(result.failed, 1)
        self.assertEqual([r.recipient_id for r in result.results], ["R1", "R1", "R2"])
        self.assertTrue(result.delivered_to("R1"))
        self.assertIsNone(NotificationBatchResult().success_rate)


class ProvidersTest(SimpleTestCase):
    message = RenderedMessage(subject="Bulletin", body="Bulletin disponible")

    def test_http_sms(self):
        session = mock.Mock()
        session.post.return_value.json.return_value = {"status": "success", "message_id": "abc"}
        provider = HttpSmsProvider("https://sms.example.com/send", "key", "ECOLE", session=session)

        self.assertEqual(provider.send("+22997000001", self.message, 10), "abc")
        _, kwargs = session.post.call_args
        self.assertEqual(kwargs["json"]["recipients"], ["+22997000001"])
        self.assertEqual(kwargs["timeout"], 10)
        self.assertEqual(kwargs["headers"]["api-key"], "key")

    def test_http_sms_gateway_error(self):
        session = mock.Mock()
        session.post.return_value.json.return_value = {"status": "error", "message": "no credit"}
        provider = HttpSmsProvider("https://sms.example.com/send", "key", session=session)
        with self.assertRaises(ProviderError):
            provider.send("+22997000001", self.message, 10)

    def test_invalid_phone(self):
        provider = HttpSmsProvider("https://sms.example.com/send", "key", session=mock.Mock())
        with self.assertRaises(InvalidAddress):
            provider.send("12", self.message, 10)

    def test_email_provider(self):
        message = RenderedMessage(subject="Bulletin", body="texte", html="<p>texte</p>")
        EmailProvider(from_email="ecole@example.com").send("parent@example.com", message, 10)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["parent@example.com"])
        self.assertEqual(mail.outbox[0].alternatives[0][1], "text/html")

    def test_email_provider_invalid_address(self):
        with self.assertRaises(InvalidAddress):
            EmailProvider().send("not-an-email", self.message, 10)

    def test_normalize_phone_number(self):
        self.assertEqual(normalize_phone_number("97 00 00 01"), "+22997000001")
        self.assertEqual(normalize_phone_number("+33 6 12 34 56 78"), "+33612345678")
        self.assertEqual(normalize_phone_number("0033612345678"), "+33612345678")
        self.assertEqual(normalize_phone_number("22997000001"), "+22997000001")
        self.assertIsNone(normalize_phone_number(""))


class RecipientSerializerTest(SimpleTestCase):
    def test_valid_recipient(self):
        s = NotificationRecipientSerializer(data={
            "id": "P000001", "display_name": "Mme Koffi", "role": "parent",
            "phone": "97 00 00 01", "preferred_language": "fr",
        })
        self.assertTrue(s.is_valid(), s.errors)
        recipient_ = s.to_recipient()
        self.assertEqual(recipient_.phone, "+22997000001")
        self.assertTrue(recipient_.is_dispatchable)

    def test_contact_required(self):
        s = NotificationRecipientSerializer(data={"id": "P000001", "display_name": "Mme Koffi", "role": "parent"})
        self.assertFalse(s.is_valid())


class DeliveryPersistenceTest(TestCase):
    def test_orm_ledger_records_once(self):
        ledger = OrmDeliveryLedger()
        result = NotificationResult(
            "42", "sms", "P000001", True, idempotency_key=idempotency_key("42", "P000001", "sms"),
        )
        ledger.record_success(result)
        ledger.record_success(result)

        self.assertEqual(result.idempotency_key, "42:P000001:sms")
        self.assertEqual(NotificationDelivery.objects.count(), 1)
        self.assertEqual(ledger.succeeded_keys(["42:P000001:sms", "42:P000001:email"]), {"42:P000001:sms"})

    def test_dispatch_with_persistent_ledger(self):
        sms = FakeProvider("sms")
        dispatcher = NotificationDispatcher(providers={"sms": sms}, catalog=TemplateCatalog(), max_workers=2)
        recipients = [recipient("R1", phone="+22997000001"), recipient("R2", phone="+22997000002")]

        dispatcher.dispatch(NOTICE, recipients, ["sms"])
        again = dispatcher.dispatch(NOTICE, recipients, ["sms"])

        self.assertEqual(len(sms.calls), 2)
        self.assertEqual(NotificationDelivery.objects.filter(bulletin_id="42").count(), 2)
        self.assertEqual(again.attempted, 0)

    def test_database_template_override(self):
        NotificationTemplate.objects.create(
            key="bulletin_standard_sms_fr", tier="standard", channel="sms", language="fr",
            body_template="Bulletin de {{ student_name }} : {{ general_average }}",
        )
        NotificationTemplate.objects.create(
            key="bulletin_standard_sms_en", tier="standard", channel="sms", language="en",
            body_template="Ignored", is_active=False,
        )
        catalog = DatabaseTemplateCatalog()

        fr = catalog.render(NOTICE, recipient("R1"), "sms", "fr")
        en = catalog.render(NOTICE, recipient("R1"), "sms", "en")
        self.assertEqual(fr.body, "Bulletin de Ama Koffi : 14.50")
        self.assertIn("Report card for Ama Koffi", en.body)


class SeedTemplatesCommandTest(TestCase):
    def test_seed_is_idempotent(self):
        out = StringIO()
        call_command("seed_notification_templates", stdout=out)
        self.assertEqual(NotificationTemplate.objects.count(), 24)
        self.assertTrue(NotificationTemplate.objects.filter(key="bulletin_excellent_whatsapp_en").exists())

        NotificationTemplate.objects.filter(key="bulletin_standard_sms_fr").update(body_template="edited")
        out = StringIO()
        call_command("seed_notification_templates", stdout=out)
        self.assertIn("0 créé(s), 0 mis à jour.", out.getvalue())
        self.assertEqual(NotificationTemplate.objects.get(key="bulletin_standard_sms_fr").body_template, "edited")

        out = StringIO()
        call_command("seed_notification_templates", "--overwrite", stdout=out)
        self.assertIn("0 créé(s), 24 mis à jour.", out.getvalue())
        self.assertNotEqual(NotificationTemplate.objects.get(key="bulletin_standard_sms_fr").body_template, "edited")


class RecipientsForStudentTest(TestCase):
    def setUp(self):
        school_class = SchoolClass.objects.create(name="6e A", level=Level.objects.create(name="6e"))
        parent_user = User.objects.create_user("parent", email="parent@example.com", first_name="Afi", last_name="Koffi")
        self.parent = Parent.objects.create(user=parent_user, phone="97 00 00 01", preferred_language="en")
        student_user = User.objects.create_user("ama", first_name="Ama", last_name="Koffi")
        self.student = Student.objects.create(user=student_user, parent=self.parent, school_class=school_class)
        UserDevice.objects.create(user=parent_user, token="tok-1")

    def test_parent_first_with_fallbacks(self):
        recipients = recipients_for_student(self.student)

        # l'élève n'a aucun contact : seul le parent est retenu
        self.assertEqual(len(recipients), 1)
        parent = recipients[0]
        self.assertEqual(parent.id, self.parent.pk)
        self.assertEqual(parent.role, "parent")
        self.assertEqual(parent.phone, "+22997000001")
        self.assertEqual(parent.whatsapp, "+22997000001")
        self.assertEqual(parent.device_tokens, ("tok-1",))
        self.assertEqual(parent.preferred_language, "en")
        self.assertEqual(primary_recipient(recipients), parent)

    def test_student_with_phone(self):
        self.student.phone = "97000009"
        self.student.save()

        recipients = recipients_for_student(self.student)
        self.assertEqual([r.role for r in recipients], ["parent", "student"])
        self.assertEqual(recipients[1].display_name, "Ama Koffi")
        self.assertIsNone(recipients[1].whatsapp)

    def test_primary_without_parent(self):
        only_student = [recipient("S1", phone="+22997000009", role="student")]
        self.assertEqual(primary_recipient(only_student).id, "S1")
        self.assertIsNone(primary_recipient([]))


class TemplateSerializerTest(TestCase):
    def test_template_syntax_is_checked(self):
        data = {
            "key": "bulletin_standard_sms_fr", "tier": "standard", "channel": "sms", "language": "fr",
            "body_template": "Bulletin de {{ student_name }}",
        }
        self.assertTrue(NotificationTemplateSerializer(data=data).is_valid())

        data["body_template"] = "Bulletin de {% if student_name %}"
        s = NotificationTemplateSerializer(data=data)
        self.assertFalse(s.is_valid())
        self.assertIn("body_template", s.errors)


class ChannelProvidersTest(SimpleTestCase):
    message = RenderedMessage(subject="Bulletin T1", body="Bulletin disponible")

    def test_whatsapp_cloud(self):
        session = mock.Mock()
        session.post.return_value.json.return_value = {"messages": [{"id": "wamid.1"}]}
        provider = WhatsAppCloudProvider("https://graph.example.com/messages", "token", session=session)

        self.assertEqual(provider.send("+22997000001", self.message, 5), "wamid.1")
        _, kwargs = session.post.call_args
        self.assertEqual(kwargs["json"]["to"], "22997000001")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer token")

    def test_whatsapp_rejected(self):
        session = mock.Mock()
        session.post.return_value.json.return_value = {"error": {"message": "not a whatsapp user"}}
        provider = WhatsAppCloudProvider("https://graph.example.com/messages", "token", session=session)
        with self.assertRaises(ProviderError):
            provider.send("+22997000001", self.message, 5)

    def test_push(self):
        session = mock.Mock()
        session.post.return_value.json.return_value = {"success": 2, "failure": 0}
        provider = HttpPushProvider("https://fcm.example.com/send", "server-key", session=session)

        self.assertEqual(provider.send(["tok-1", "tok-2"], self.message, 5), "push-sent-2")
        _, kwargs = session.post.call_args
        self.assertEqual(kwargs["json"]["notification"]["title"], "Bulletin T1")

        session.post.return_value.json.return_value = {"success": 0, "failure": 2}
        with self.assertRaises(ProviderError):
            provider.send(["tok-1", "tok-2"], self.message, 5)
        with self.assertRaises(InvalidAddress):
            provider.send([], self.message, 5)

    def test_http_error_propagates(self):
        session = mock.Mock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
        provider = HttpSmsProvider("https://sms.example.com/send", "key", session=session)
        with self.assertRaises(requests.HTTPError):
            provider.send("+22997000001", self.message, 5)

    def test_console(self):
        self.assertEqual(ConsoleProvider("sms").send("+22997000001", self.message, 5), "logged")

    @override_settings(
        NOTIFICATIONS_SMS_BACKEND="http",
        NOTIFICATIONS_SMS_API_URL="https://sms.example.com/send",
        NOTIFICATIONS_SMS_API_KEY="key",
        NOTIFICATIONS_WHATSAPP_BACKEND="",
        NOTIFICATIONS_PUSH_BACKEND="console",
    )
    def test_build_providers_from_settings(self):
        providers = build_providers()
        self.assertEqual(set(providers), {"email", "sms", "push"})
        self.assertIsInstance(providers["sms"], HttpSmsProvider)
        self.assertIsInstance(providers["email"], EmailProvider)
        self.assertIsInstance(providers["push"], ConsoleProvider)


class ExtensionPointsTest(SimpleTestCase):
    def test_provider_must_implement_send(self):
        class Incomplete(ChannelProvider):
            channel = "sms"

        with self.assertRaises(TypeError):
            Incomplete()
        with self.assertRaises(TypeError):
            ChannelProvider()

    def test_ledger_must_implement_both_operations(self):
        class ReadOnly(DeliveryLedger):
            def succeeded_keys(self, keys):
                return set()

        with self.assertRaises(TypeError):
            ReadOnly()
        self.assertFalse(InMemoryDeliveryLedger().has_succeeded("42:R1:sms"))
