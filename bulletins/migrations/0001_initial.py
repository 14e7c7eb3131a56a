# Generated manually

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


STATUS_CHOICES = [
    ('draft', 'Brouillon'),
    ('submitted', 'Soumis'),
    ('approved', 'Approuvé'),
    ('rejected', 'Rejeté'),
    ('published', 'Publié'),
    ('sent', 'Envoyé'),
]


def _user_fk():
    return models.ForeignKey(
        blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
        related_name='+', to=settings.AUTH_USER_MODEL,
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('academics', '0002_grade_subjectcomment'),
        ('core', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Bulletin',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('term', models.CharField(choices=[('T1', '1er trimestre'), ('T2', '2e trimestre'), ('T3', '3e trimestre')], max_length=10)),
                ('academic_year', models.CharField(max_length=9)),
                ('general_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('annual_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('class_rank', models.PositiveIntegerField(blank=True, null=True)),
                ('total_students_in_class', models.PositiveIntegerField(blank=True, null=True)),
                ('status', models.CharField(choices=STATUS_CHOICES, default='draft', max_length=20)),
                ('version', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('rejected_at', models.DateTimeField(blank=True, null=True)),
                ('published_at', models.DateTimeField(blank=True, null=True)),
                ('sent_at', models.DateTimeField(blank=True, null=True)),
                ('grades_frozen_at', models.DateTimeField(blank=True, null=True)),
                ('last_approval_comment', models.TextField(blank=True, default='')),
                ('subject_snapshot', models.JSONField(blank=True, default=list)),
                ('council_decision', models.CharField(blank=True, choices=[('promote', 'Admis(e) en classe supérieure'), ('repeat', 'Redouble')], default='', max_length=10)),
                ('mention', models.CharField(blank=True, choices=[('excellent', 'Excellent'), ('good', 'Bien'), ('fair', 'Assez bien'), ('pass', 'Passable'), ('none', 'Aucune')], default='', max_length=10)),
                ('approved_by', _user_fk()),
                ('created_by', _user_fk()),
                ('submitted_by', _user_fk()),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='bulletins', to='academics.schoolclass')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='bulletins', to='core.student')),
            ],
            options={
                'ordering': ['school_class__name', 'student__last_name', 'student__first_name', 'term'],
                'unique_together': {('student', 'term', 'academic_year')},
                'indexes': [
                    models.Index(fields=['school_class', 'term', 'academic_year'], name='bulletin_class_term_idx'),
                    models.Index(fields=['status'], name='bulletin_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='BulletinTransition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_status', models.CharField(choices=STATUS_CHOICES, max_length=20)),
                ('to_status', models.CharField(choices=STATUS_CHOICES, max_length=20)),
                ('comment', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('actor', _user_fk()),
                ('bulletin', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='history', to='bulletins.bulletin')),
            ],
            options={'ordering': ['created_at', 'id']},
        ),
        migrations.CreateModel(
            name='BulletinSignature',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('signer_name', models.CharField(max_length=150)),
                ('signer_position', models.CharField(blank=True, default='', max_length=150)),
                ('has_stamp', models.BooleanField(default=False)),
                ('signature_hash', models.CharField(max_length=64)),
                ('verification_code', models.CharField(max_length=32, unique=True)),
                ('signed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('bulletin', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='signatures', to='bulletins.bulletin')),
            ],
            options={
                'ordering': ['signed_at', 'id'],
                'unique_together': {('bulletin', 'signer_name')},
            },
        ),
    ]
