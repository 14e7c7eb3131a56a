# Generated manually

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


def _score(**kwargs):
    return models.DecimalField(
        blank=True, decimal_places=2, max_digits=5, null=True,
        validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(20)],
        **kwargs
    )


TERM_CHOICES = [('T1', '1er trimestre'), ('T2', '2e trimestre'), ('T3', '3e trimestre')]


class Migration(migrations.Migration):

    dependencies = [
        ('academics', '0001_initial'),
        ('core', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Grade',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('term', models.CharField(choices=TERM_CHOICES, max_length=10)),
                ('academic_year', models.CharField(max_length=9)),
                ('interrogation1', _score()),
                ('interrogation2', _score()),
                ('interrogation3', _score()),
                ('devoir1', _score()),
                ('devoir2', _score()),
                ('average_interro', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('average_subject', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grades', to='core.student')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grades', to='academics.subject')),
            ],
            options={
                'ordering': ['student__user__username', 'subject__name'],
                'unique_together': {('student', 'subject', 'term', 'academic_year')},
            },
        ),
        migrations.CreateModel(
            name='SubjectComment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('term', models.CharField(choices=TERM_CHOICES, max_length=10)),
                ('academic_year', models.CharField(max_length=9)),
                ('comment', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subject_comments', to='core.student')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subject_comments', to='academics.subject')),
                ('teacher', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='subject_comments', to='core.teacher')),
            ],
            options={
                'ordering': ['student__user__username', 'subject__name'],
                'unique_together': {('student', 'subject', 'term', 'academic_year')},
            },
        ),
    ]
