from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


MIN_SCORE = 0
MAX_SCORE = 20

_score_validators = [MinValueValidator(MIN_SCORE), MaxValueValidator(MAX_SCORE)]


class Term(models.TextChoices):
    T1 = "T1", "1er trimestre"
    T2 = "T2", "2e trimestre"
    T3 = "T3", "3e trimestre"


# =======================
# Niveaux et classes
# =======================
class Level(models.Model):
    name = models.CharField(max_length=50, unique=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class SchoolClass(models.Model):
    name = models.CharField(max_length=50)
    level = models.ForeignKey(Level, on_delete=models.CASCADE, related_name="classes")

    class Meta:
        unique_together = ("name", "level")
        ordering = ["level__name", "name"]

    def __str__(self):
        return f"{self.name} ({self.level})"


# =======================
# Matières
# =======================
class Subject(models.Model):
    name = models.CharField(max_length=100, unique=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class ClassSubject(models.Model):
    school_class = models.ForeignKey(
        SchoolClass, on_delete=models.CASCADE, related_name="class_subjects"
    )
    subject = models.ForeignKey(
        Subject, on_delete=models.CASCADE, related_name="class_subjects"
    )
    coefficient = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    # Une matière facultative ne fait partie du programme de l'élève que s'il a une note
    is_optional = models.BooleanField(default=False)

    class Meta:
        unique_together = ("school_class", "subject")
        ordering = ["school_class__level__name", "school_class__name", "subject__name"]

    def __str__(self):
        opt = " (facultatif)" if self.is_optional else ""
        return f"{self.school_class} - {self.subject} (coef {self.coefficient}){opt}"


# =======================
# Notes
# =======================
class Grade(models.Model):
    student = models.ForeignKey("core.Student", on_delete=models.CASCADE, related_name="grades")
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name="grades")
    term = models.CharField(max_length=10, choices=Term.choices)
    academic_year = models.CharField(max_length=9)  # ex: "2024-2025"

    interrogation1 = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=_score_validators)
    interrogation2 = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=_score_validators)
    interrogation3 = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=_score_validators)
    devoir1 = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=_score_validators)
    devoir2 = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=_score_validators)

    average_interro = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    average_subject = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("student", "subject", "term", "academic_year")
        ordering = ["student__user__username", "subject__name"]

    def __str__(self):
        return f"{self.student} - {self.subject} ({self.term} {self.academic_year})"

    def clean(self):
        school_class = getattr(self.student, "school_class", None)
        if school_class is None:
            raise ValidationError("L'élève doit être rattaché à une classe avant d'enregistrer une note.")
        if not ClassSubject.objects.filter(school_class=school_class, subject=self.subject).exists():
            raise ValidationError(f"La matière « {self.subject} » n'est pas définie pour la classe « {school_class} ».")

    def calculate_averages(self):
        interros = [n for n in [self.interrogation1, self.interrogation2, self.interrogation3] if n is not None]
        self.average_interro = round(sum(interros) / len(interros), 2) if interros else None
        devoirs = [n for n in [self.devoir1, self.devoir2] if n is not None]
        all_grades = devoirs + ([self.average_interro] if self.average_interro is not None else [])
        self.average_subject = round(sum(all_grades) / len(all_grades), 2) if all_grades else None

    def save(self, *args, **kwargs):
        self.calculate_averages()
        super().save(*args, **kwargs)


# =======================
# Appréciations des professeurs
# =======================
class SubjectComment(models.Model):
    student = models.ForeignKey("core.Student", on_delete=models.CASCADE, related_name="subject_comments")
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name="subject_comments")
    teacher = models.ForeignKey(
        "core.Teacher", on_delete=models.SET_NULL, null=True, blank=True, related_name="subject_comments"
    )
    term = models.CharField(max_length=10, choices=Term.choices)
    academic_year = models.CharField(max_length=9)

    comment = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("student", "subject", "term", "academic_year")
        ordering = ["student__user__username", "subject__name"]

    def __str__(self):
        return f"{self.student} - {self.subject} ({self.term})"
