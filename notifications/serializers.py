from django.template import Template
from django.template.exceptions import TemplateSyntaxError
from rest_framework import serializers

from core.models import Language
from notifications.models import NotificationTemplate
from notifications.recipients import ROLE_PARENT, ROLE_STUDENT, NotificationRecipient
from notifications.utils import is_valid_phone, normalize_phone_number


class NotificationRecipientSerializer(serializers.Serializer):
    """
    Valide un destinataire reçu de l'extérieur (numéros normalisés en E.164)
    avant de le confier au dispatcher.
    """
    id = serializers.CharField(max_length=64)
    display_name = serializers.CharField(max_length=150)
    role = serializers.ChoiceField(choices=[ROLE_STUDENT, ROLE_PARENT])
    email = serializers.EmailField(required=False, allow_blank=True, allow_null=True)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True, allow_null=True)
    whatsapp = serializers.CharField(max_length=20, required=False, allow_blank=True, allow_null=True)
    device_tokens = serializers.ListField(child=serializers.CharField(max_length=512), required=False)
    preferred_language = serializers.ChoiceField(choices=Language.choices, required=False, allow_null=True)

    def _validate_number(self, value):
        if not value:
            return None
        number = normalize_phone_number(value)
        if not is_valid_phone(number):
            raise serializers.ValidationError(f"Numéro invalide : {value}")
        return number

    def validate_phone(self, value):
        return self._validate_number(value)

    def validate_whatsapp(self, value):
        return self._validate_number(value)

    def validate(self, attrs):
        if not any([attrs.get("email"), attrs.get("phone"), attrs.get("whatsapp"), attrs.get("device_tokens")]):
            raise serializers.ValidationError("Au moins un moyen de contact est requis.")
        return attrs

    def to_recipient(self) -> NotificationRecipient:
        data = self.validated_data
        return NotificationRecipient(
            id=data["id"],
            display_name=data["display_name"],
            role=data["role"],
            email=data.get("email") or None,
            phone=data.get("phone"),
            whatsapp=data.get("whatsapp"),
            device_tokens=tuple(data.get("device_tokens") or ()),
            preferred_language=data.get("preferred_language"),
        )


class NotificationTemplateSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationTemplate
        fields = ('key', 'tier', 'channel', 'language', 'subject_template', 'body_template', 'is_active')

    def _check_syntax(self, value):
        try:
            Template(value or "")
        except TemplateSyntaxError as e:
            raise serializers.ValidationError(f"Template invalide : {e}")
        return value

    def validate_subject_template(self, value):
        return self._check_syntax(value)

    def validate_body_template(self, value):
        return self._check_syntax(value)
