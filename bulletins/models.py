from django.conf import settings
from django.db import models
from django.utils import timezone

from academics.models import Term
from academics.services.council import Decision, Mention
from academics.services.grades import SubjectGrade


class BulletinStatus(models.TextChoices):
    DRAFT = "draft", "Brouillon"
    SUBMITTED = "submitted", "Soumis"
    APPROVED = "approved", "Approuvé"
    REJECTED = "rejected", "Rejeté"
    PUBLISHED = "published", "Publié"
    SENT = "sent", "Envoyé"


# =======================
# Bulletin
# =======================
class Bulletin(models.Model):
    student = models.ForeignKey("core.Student", on_delete=models.CASCADE, related_name="bulletins")
    school_class = models.ForeignKey("academics.SchoolClass", on_delete=models.PROTECT, related_name="bulletins")
    term = models.CharField(max_length=10, choices=Term.choices)
    academic_year = models.CharField(max_length=9)

    general_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    annual_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    class_rank = models.PositiveIntegerField(null=True, blank=True)
    total_students_in_class = models.PositiveIntegerField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=BulletinStatus.choices, default=BulletinStatus.DRAFT)
    version = models.PositiveIntegerField(default=0)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    submitted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    published_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    grades_frozen_at = models.DateTimeField(null=True, blank=True)

    last_approval_comment = models.TextField(blank=True, default="")

    # Copie des notes au moment de la soumission : les modifications ultérieures
    # des notes n'affectent plus ce bulletin.
    subject_snapshot = models.JSONField(default=list, blank=True)

    # Conseil de classe (T3 uniquement)
    council_decision = models.CharField(max_length=10, choices=Decision.choices, blank=True, default="")
    mention = models.CharField(max_length=10, choices=Mention.choices, blank=True, default="")

    class Meta:
        unique_together = ("student", "term", "academic_year")
        ordering = ["school_class__name", "student__last_name", "student__first_name", "term"]
        indexes = [
            models.Index(fields=["school_class", "term", "academic_year"], name="bulletin_class_term_idx"),
            models.Index(fields=["status"], name="bulletin_status_idx"),
        ]

    def __str__(self):
        return f"Bulletin {self.student} - {self.term} {self.academic_year} ({self.status})"

    def subjects(self):
        return [SubjectGrade.from_dict(row) for row in self.subject_snapshot or []]

    @property
    def is_frozen(self):
        return self.grades_frozen_at is not None


class BulletinTransition(models.Model):
    """Historique des changements d'état (audit)."""
    bulletin = models.ForeignKey(Bulletin, on_delete=models.CASCADE, related_name="history")
    actor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    from_status = models.CharField(max_length=20, choices=BulletinStatus.choices)
    to_status = models.CharField(max_length=20, choices=BulletinStatus.choices)
    comment = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.bulletin_id}: {self.from_status} -> {self.to_status}"


class BulletinSignature(models.Model):
    bulletin = models.ForeignKey(Bulletin, on_delete=models.CASCADE, related_name="signatures")
    signer_name = models.CharField(max_length=150)
    signer_position = models.CharField(max_length=150, blank=True, default="")
    has_stamp = models.BooleanField(default=False)
    signature_hash = models.CharField(max_length=64)
    verification_code = models.CharField(max_length=32, unique=True)
    # fait partie du contenu signé : fixé explicitement, jamais auto_now
    signed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ("bulletin", "signer_name")
        ordering = ["signed_at", "id"]

    def __str__(self):
        return f"{self.signer_name} ({self.signer_position}) - bulletin {self.bulletin_id}"
