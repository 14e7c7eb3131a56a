from django.conf import settings
from django.db import models

from core.models import Language


class Channel(models.TextChoices):
    SMS = 'sms', 'SMS'
    EMAIL = 'email', 'Email'
    WHATSAPP = 'whatsapp', 'WhatsApp'
    PUSH = 'push', 'Push'


class Tier(models.TextChoices):
    EXCELLENT = 'excellent', 'Excellent'
    STANDARD = 'standard', 'Standard'
    NEEDS_IMPROVEMENT = 'needs_improvement', 'À améliorer'


class NotificationTemplate(models.Model):
    """
    Surcharge en base d'un message intégré.
    Clé : ``bulletin_<tier>_<channel>_<language>`` (cf. messages.template_key).
    """
    key = models.CharField(max_length=120, unique=True)
    tier = models.CharField(max_length=20, choices=Tier.choices)
    channel = models.CharField(max_length=20, choices=Channel.choices)
    language = models.CharField(max_length=2, choices=Language.choices)
    subject_template = models.CharField(max_length=200, blank=True, default='')
    body_template = models.TextField()
    is_active = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['key']

    def __str__(self):
        return self.key


class UserDevice(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='devices')
    provider = models.CharField(max_length=30, default='fcm')
    token = models.CharField(max_length=512)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('user', 'token')

    def __str__(self):
        return f"{self.user} ({self.provider})"


class NotificationDelivery(models.Model):
    """
    Registre d'idempotence : une ligne par envoi réussi
    (clé ``<bulletin_id>:<recipient_id>:<channel>``).
    """
    idempotency_key = models.CharField(max_length=200, unique=True)
    bulletin_id = models.CharField(max_length=64, db_index=True)
    recipient_id = models.CharField(max_length=64)
    channel = models.CharField(max_length=20, choices=Channel.choices)
    sent_at = models.DateTimeField()

    class Meta:
        ordering = ['-sent_at']

    def __str__(self):
        return self.idempotency_key
