import random

from django.contrib.auth.models import User
from django.db import models


class Language(models.TextChoices):
    FR = "fr", "Français"
    EN = "en", "English"


# =======================
# Teacher
# =======================
def generate_teacher_id():
    """Génère un ID unique sous la forme T000000."""
    while True:
        new_id = f"T{random.randint(0, 999999):06d}"
        if not Teacher.objects.filter(id=new_id).exists():
            return new_id


class Teacher(models.Model):
    id = models.CharField(max_length=7, primary_key=True, default=generate_teacher_id, editable=False)
    user = models.OneToOneField(User, on_delete=models.CASCADE)

    first_name = models.CharField(max_length=30, default="", blank=True)
    last_name = models.CharField(max_length=30, default="", blank=True)

    subject = models.ForeignKey(
        "academics.Subject",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="teachers"
    )
    classes = models.ManyToManyField(
        "academics.SchoolClass",
        blank=True,
        related_name="teachers"
    )

    class Meta:
        ordering = ["first_name", "last_name"]

    def __str__(self):
        return f"{self.first_name} {self.last_name}".strip() or self.user.username

    @property
    def role(self):
        return "teacher"

    def save(self, *args, **kwargs):
        # Auto-sync avec l'utilisateur lié
        if self.user:
            self.first_name = self.user.first_name
            self.last_name = self.user.last_name
        super().save(*args, **kwargs)


# =======================
# Parent
# =======================
def generate_parent_id():
    """Génère un ID unique sous la forme P000000."""
    while True:
        new_id = f"P{random.randint(0, 999999):06d}"
        if not Parent.objects.filter(id=new_id).exists():
            return new_id


class Parent(models.Model):
    id = models.CharField(max_length=7, primary_key=True, default=generate_parent_id, editable=False)
    user = models.OneToOneField(User, on_delete=models.CASCADE)

    first_name = models.CharField(max_length=30, default="", blank=True)
    last_name = models.CharField(max_length=30, default="", blank=True)

    phone = models.CharField(max_length=20, blank=True, null=True)
    whatsapp = models.CharField(max_length=20, blank=True, null=True)
    preferred_language = models.CharField(max_length=2, choices=Language.choices, default=Language.FR)

    class Meta:
        ordering = ["first_name", "last_name"]

    def __str__(self):
        return f"{self.first_name} {self.last_name}".strip() or self.user.username

    @property
    def role(self):
        return "parent"

    def save(self, *args, **kwargs):
        if self.user:
            self.first_name = self.user.first_name
            self.last_name = self.user.last_name
        super().save(*args, **kwargs)


# =======================
# Student
# =======================
def generate_student_id():
    """Génère un ID unique sous la forme S000000."""
    while True:
        new_id = f"S{random.randint(0, 999999):06d}"
        if not Student.objects.filter(id=new_id).exists():
            return new_id


class Student(models.Model):
    SEX_CHOICES = [
        ('M', 'Masculin'),
        ('F', 'Féminin'),
    ]

    id = models.CharField(max_length=7, primary_key=True, default=generate_student_id, editable=False)
    user = models.OneToOneField(User, on_delete=models.CASCADE)

    first_name = models.CharField(max_length=30, default="", blank=True)
    last_name = models.CharField(max_length=30, default="", blank=True)

    date_of_birth = models.DateField(null=True, blank=True)
    sex = models.CharField(max_length=1, choices=SEX_CHOICES, default='M')
    phone = models.CharField(max_length=20, blank=True, null=True)
    preferred_language = models.CharField(max_length=2, choices=Language.choices, default=Language.FR)

    parent = models.ForeignKey(Parent, on_delete=models.SET_NULL, null=True, blank=True, related_name="students")
    school_class = models.ForeignKey(
        "academics.SchoolClass",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="students"
    )

    class Meta:
        ordering = ["first_name", "last_name"]

    def __str__(self):
        name = f"{self.first_name} {self.last_name}".strip() or self.user.username
        cls = f" ({self.school_class})" if self.school_class_id else ""
        return f"{name}{cls}"

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip() or self.user.username

    @property
    def role(self):
        return "student"

    def save(self, *args, **kwargs):
        if self.user:
            self.first_name = self.user.first_name
            self.last_name = self.user.last_name
        super().save(*args, **kwargs)
