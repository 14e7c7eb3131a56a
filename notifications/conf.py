"""
Configuration of the notifications app.

Override any value in Django settings with the NOTIFICATIONS_ prefix, e.g.
``NOTIFICATIONS_MAX_WORKERS = 4``.
"""

_DEFAULTS = {
    # Pool d'envoi
    'MAX_WORKERS': 8,
    'SEND_TIMEOUT': 15,  # seconds, per attempt
    'BATCH_TIMEOUT': None,  # seconds, whole dispatch; None = SEND_TIMEOUT x attempts

    'DEFAULT_LANGUAGE': 'fr',
    'DEFAULT_CALLING_CODE': '229',

    # Email
    'EMAIL_FROM': 'no-reply@school.local',

    # SMS (passerelle HTTP)
    'SMS_BACKEND': 'console',
    'SMS_API_URL': '',
    'SMS_API_KEY': '',
    'SMS_SENDER_ID': 'SCHOOL',

    # WhatsApp Cloud API
    'WHATSAPP_BACKEND': 'console',
    'WHATSAPP_API_URL': '',
    'WHATSAPP_TOKEN': '',

    # Push (FCM HTTP)
    'PUSH_BACKEND': 'console',
    'PUSH_API_URL': '',
    'PUSH_SERVER_KEY': '',
}


def get_setting(name):
    from django.conf import settings

    if name not in _DEFAULTS:
        raise AttributeError(f"Unknown notifications setting: {name}")
    return getattr(settings, f'NOTIFICATIONS_{name}', _DEFAULTS[name])
