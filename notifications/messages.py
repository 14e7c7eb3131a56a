# notifications/messages.py
"""
Contenu des notifications de bulletin.

Le niveau du message dépend de la moyenne générale :
    >= 16        -> excellent
    < 10         -> needs_improvement
    sinon / None -> standard

Les textes intégrés (fr/en) peuvent être surchargés en base via
``NotificationTemplate`` (clé ``bulletin_<tier>_<channel>_<language>``,
voir la commande ``seed_notification_templates``).
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterator, Optional, Tuple

from django.utils.html import strip_tags

from core.models import Language
from notifications.conf import get_setting
from notifications.models import Channel, NotificationTemplate, Tier
from notifications.utils import render_django_template

logger = logging.getLogger(__name__)

EXCELLENT_THRESHOLD = Decimal("16")
NEEDS_IMPROVEMENT_THRESHOLD = Decimal("10")


def select_tier(general_average) -> str:
    if general_average is None:
        return Tier.STANDARD.value
    average = Decimal(str(general_average))
    if average >= EXCELLENT_THRESHOLD:
        return Tier.EXCELLENT.value
    if average < NEEDS_IMPROVEMENT_THRESHOLD:
        return Tier.NEEDS_IMPROVEMENT.value
    return Tier.STANDARD.value


def template_key(tier, channel, language) -> str:
    return f"bulletin_{tier}_{channel}_{language}"


@dataclass(frozen=True)
class MessageTemplate:
    subject: str
    body: str


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str
    html: Optional[str] = None


# =======================
# Textes intégrés
# =======================
_SHORT = {
    (Tier.EXCELLENT, Language.FR): (
        "{{ school_name }}: Excellents résultats ! {{ student_name }} : {{ general_average }}/20"
        "{% if class_rank %}, rang {{ class_rank }}/{{ total_students }}{% endif %}. "
        "Bulletin {{ term_label }} disponible. Félicitations ! {{ school_contact }}"
    ),
    (Tier.EXCELLENT, Language.EN): (
        "{{ school_name }}: Excellent results! {{ student_name }}: {{ general_average }}/20"
        "{% if class_rank %}, rank {{ class_rank }}/{{ total_students }}{% endif %}. "
        "{{ term }} report available. Congratulations! {{ school_contact }}"
    ),
    (Tier.STANDARD, Language.FR): (
        "{{ school_name }}: Bulletin de {{ student_name }} ({{ class_name }}) - {{ term_label }} disponible. "
        "{% if general_average %}Moyenne : {{ general_average }}/20. {% endif %}Infos : {{ school_contact }}"
    ),
    (Tier.STANDARD, Language.EN): (
        "{{ school_name }}: Report card for {{ student_name }} ({{ class_name }}) - {{ term }} available. "
        "{% if general_average %}Average: {{ general_average }}/20. {% endif %}Info: {{ school_contact }}"
    ),
    (Tier.NEEDS_IMPROVEMENT, Language.FR): (
        "{{ school_name }}: Bulletin {{ term_label }} de {{ student_name }} disponible. "
        "Moyenne : {{ general_average }}/20. Soutien recommandé, contactez : {{ school_contact }}"
    ),
    (Tier.NEEDS_IMPROVEMENT, Language.EN): (
        "{{ school_name }}: {{ term }} report card for {{ student_name }} available. "
        "Average: {{ general_average }}/20. Support recommended, contact: {{ school_contact }}"
    ),
}

_WHATSAPP = {
    Language.FR: (
        "*{{ school_name }}*\n"
        "*Bulletin scolaire disponible*\n\n"
        "Bonjour {{ recipient_name }},\n\n"
        "Le bulletin de *{{ student_name }}* ({{ class_name }}) pour le {{ term_label }} "
        "{{ academic_year }} est disponible.\n"
        "{% if general_average %}Moyenne générale : *{{ general_average }}/20*\n{% endif %}"
        "{% if class_rank %}Rang : {{ class_rank }}/{{ total_students }}\n{% endif %}\n"
        "{% if tier == 'excellent' %}Félicitations pour ces excellents résultats !"
        "{% elif tier == 'needs_improvement' %}Un accompagnement est recommandé pour le prochain trimestre."
        "{% else %}Merci de votre suivi.{% endif %}\n\n"
        "{{ school_contact }}"
    ),
    Language.EN: (
        "*{{ school_name }}*\n"
        "*Report card available*\n\n"
        "Hello {{ recipient_name }},\n\n"
        "The {{ term }} {{ academic_year }} report card of *{{ student_name }}* ({{ class_name }}) "
        "is available.\n"
        "{% if general_average %}General average: *{{ general_average }}/20*\n{% endif %}"
        "{% if class_rank %}Rank: {{ class_rank }}/{{ total_students }}\n{% endif %}\n"
        "{% if tier == 'excellent' %}Congratulations on these excellent results!"
        "{% elif tier == 'needs_improvement' %}Additional support is recommended for next term."
        "{% else %}Thank you for your follow-up.{% endif %}\n\n"
        "{{ school_contact }}"
    ),
}

_EMAIL = {
    Language.FR: MessageTemplate(
        subject="Bulletin scolaire de {{ student_name }} - {{ term_label }} {{ academic_year }}",
        body=(
            "<p>Bonjour {{ recipient_name }},</p>"
            "<p>Le bulletin de <strong>{{ student_name }}</strong> ({{ class_name }}) pour le "
            "{{ term_label }} {{ academic_year }} est disponible.</p>"
            "<ul>"
            "{% if general_average %}<li>Moyenne générale : {{ general_average }}/20</li>{% endif %}"
            "{% if class_rank %}<li>Rang : {{ class_rank }}/{{ total_students }}</li>{% endif %}"
            "</ul>"
            "{% if tier == 'excellent' %}<p>Félicitations pour ces excellents résultats !</p>"
            "{% elif tier == 'needs_improvement' %}<p>Un accompagnement est recommandé ; "
            "n'hésitez pas à contacter l'établissement.</p>{% endif %}"
            "<p>{{ school_name }}<br>{{ school_contact }}</p>"
        ),
    ),
    Language.EN: MessageTemplate(
        subject="Report card of {{ student_name }} - {{ term }} {{ academic_year }}",
        body=(
            "<p>Hello {{ recipient_name }},</p>"
            "<p>The {{ term }} {{ academic_year }} report card of <strong>{{ student_name }}</strong> "
            "({{ class_name }}) is available.</p>"
            "<ul>"
            "{% if general_average %}<li>General average: {{ general_average }}/20</li>{% endif %}"
            "{% if class_rank %}<li>Rank: {{ class_rank }}/{{ total_students }}</li>{% endif %}"
            "</ul>"
            "{% if tier == 'excellent' %}<p>Congratulations on these excellent results!</p>"
            "{% elif tier == 'needs_improvement' %}<p>Additional support is recommended; "
            "feel free to contact the school.</p>{% endif %}"
            "<p>{{ school_name }}<br>{{ school_contact }}</p>"
        ),
    ),
}

_PUSH_TITLE = {
    Language.FR: "Bulletin {{ term_label }} disponible",
    Language.EN: "{{ term }} report card available",
}


def default_template(tier, channel, language) -> MessageTemplate:
    tier, channel, language = Tier(tier), Channel(channel), Language(language)
    if channel == Channel.EMAIL:
        return _EMAIL[language]
    if channel == Channel.WHATSAPP:
        return MessageTemplate(subject="", body=_WHATSAPP[language])
    if channel == Channel.PUSH:
        return MessageTemplate(subject=_PUSH_TITLE[language], body=_SHORT[(tier, language)])
    return MessageTemplate(subject="", body=_SHORT[(tier, language)])


def iter_default_templates() -> Iterator[Tuple[str, str, str, str, MessageTemplate]]:
    """(key, tier, channel, language, template) pour chaque combinaison."""
    for tier in Tier.values:
        for channel in Channel.values:
            for language in Language.values:
                yield template_key(tier, channel, language), tier, channel, language, default_template(tier, channel, language)


# =======================
# Notice (données d'un bulletin à annoncer)
# =======================
@dataclass(frozen=True)
class BulletinNotice:
    bulletin_id: str
    student_name: str
    class_name: str
    term: str
    term_label: str
    academic_year: str
    general_average: Optional[float] = None
    class_rank: Optional[int] = None
    total_students: Optional[int] = None
    school_name: str = ""
    school_contact: str = ""

    @property
    def tier(self) -> str:
        return select_tier(self.general_average)

    def context(self, recipient) -> Dict:
        return {
            "school_name": self.school_name,
            "school_contact": self.school_contact,
            "student_name": self.student_name,
            "class_name": self.class_name,
            "term": self.term,
            "term_label": self.term_label,
            "academic_year": self.academic_year,
            "general_average": None if self.general_average is None else f"{self.general_average:.2f}",
            "class_rank": self.class_rank,
            "total_students": self.total_students,
            "recipient_name": recipient.display_name,
            "tier": self.tier,
        }


# =======================
# Catalogues
# =======================
class TemplateCatalog:
    """Textes intégrés uniquement."""

    def get(self, tier, channel, language) -> MessageTemplate:
        return default_template(tier, channel, language)

    def render(self, notice: BulletinNotice, recipient, channel, language) -> RenderedMessage:
        template = self.get(notice.tier, channel, language)
        ctx = notice.context(recipient)
        if Channel(channel) == Channel.EMAIL:
            html = render_django_template(template.body, ctx)
            return RenderedMessage(
                subject=render_django_template(template.subject, ctx, autoescape=False),
                body=strip_tags(html),
                html=html,
            )
        return RenderedMessage(
            subject=render_django_template(template.subject, ctx, autoescape=False),
            body=render_django_template(template.body, ctx, autoescape=False).strip(),
        )


class DatabaseTemplateCatalog(TemplateCatalog):
    """
    Surcharges ``NotificationTemplate`` actives, sinon textes intégrés.
    Les lignes sont chargées une fois par instance (au premier accès).
    """

    def __init__(self):
        self._overrides: Optional[Dict[str, MessageTemplate]] = None

    def _load(self) -> Dict[str, MessageTemplate]:
        if self._overrides is None:
            self._overrides = {
                t.key: MessageTemplate(subject=t.subject_template, body=t.body_template)
                for t in NotificationTemplate.objects.filter(is_active=True)
            }
            logger.debug("Loaded %d notification template overrides", len(self._overrides))
        return self._overrides

    def get(self, tier, channel, language) -> MessageTemplate:
        override = self._load().get(template_key(tier, channel, language))
        if override is not None:
            return override
        return super().get(tier, channel, language)


def resolve_language(recipient, language=None) -> str:
    """Langue du destinataire, sinon celle de l'appel, sinon la langue par défaut."""
    for candidate in (recipient.preferred_language, language, get_setting("DEFAULT_LANGUAGE")):
        if candidate in Language.values:
            return candidate
    return Language.FR.value
