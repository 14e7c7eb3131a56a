# notifications/utils.py
import logging
import re

from django.template import Template, Context
from django.template.exceptions import TemplateSyntaxError

from notifications.conf import get_setting

logger = logging.getLogger(__name__)

# Format international E.164
E164_PATTERN = re.compile(r'^\+[1-9]\d{7,14}$')


def render_django_template(template_str: str, payload: dict, autoescape: bool = True) -> str:
    """
    Render a Django-style template string using django.template.Template.
    Returns a safe fallback on error and logs the exception.
    Plain-text channels (SMS, WhatsApp, push) render with autoescape=False.
    """
    if not template_str:
        return ''
    try:
        ctx = Context(payload or {}, autoescape=autoescape)
        tpl = Template(template_str)
        return tpl.render(ctx)
    except TemplateSyntaxError as e:
        logger.exception("Django template render error: %s | tpl: %s | payload: %s", e, template_str, payload)
        # safe readable fallback (avoid exposing stack traces)
        return (template_str if len(template_str) < 200 else template_str[:200] + '...')


def normalize_phone_number(phone, calling_code=None):
    """
    Normalise un numéro au format E.164.

    - "+22997000000" / "0022997000000" -> inchangé / préfixe 00 remplacé
    - numéro local ("97 00 00 00", "0197000000") -> indicatif par défaut
      (NOTIFICATIONS_DEFAULT_CALLING_CODE)

    Retourne None si le numéro est vide.
    """
    if not phone:
        return None

    calling_code = str(calling_code or get_setting('DEFAULT_CALLING_CODE')).lstrip('+')
    phone = re.sub(r'[\s\-\.\(\)]', '', str(phone).strip())

    if phone.startswith('+'):
        return phone
    if phone.startswith('00'):
        return '+' + phone[2:]
    if phone.startswith(calling_code) and len(phone) > len(calling_code) + 7:
        return '+' + phone
    return '+' + calling_code + phone


def is_valid_phone(phone) -> bool:
    return bool(phone) and bool(E164_PATTERN.match(phone))
