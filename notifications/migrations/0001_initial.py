# Generated manually

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


CHANNEL_CHOICES = [('sms', 'SMS'), ('email', 'Email'), ('whatsapp', 'WhatsApp'), ('push', 'Push')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='NotificationTemplate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('key', models.CharField(max_length=120, unique=True)),
                ('tier', models.CharField(choices=[('excellent', 'Excellent'), ('standard', 'Standard'), ('needs_improvement', 'À améliorer')], max_length=20)),
                ('channel', models.CharField(choices=CHANNEL_CHOICES, max_length=20)),
                ('language', models.CharField(choices=[('fr', 'Français'), ('en', 'English')], max_length=2)),
                ('subject_template', models.CharField(blank=True, default='', max_length=200)),
                ('body_template', models.TextField()),
                ('is_active', models.BooleanField(default=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={'ordering': ['key']},
        ),
        migrations.CreateModel(
            name='NotificationDelivery',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('idempotency_key', models.CharField(max_length=200, unique=True)),
                ('bulletin_id', models.CharField(db_index=True, max_length=64)),
                ('recipient_id', models.CharField(max_length=64)),
                ('channel', models.CharField(choices=CHANNEL_CHOICES, max_length=20)),
                ('sent_at', models.DateTimeField()),
            ],
            options={'ordering': ['-sent_at']},
        ),
        migrations.CreateModel(
            name='UserDevice',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('provider', models.CharField(default='fcm', max_length=30)),
                ('token', models.CharField(max_length=512)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='devices', to=settings.AUTH_USER_MODEL)),
            ],
            options={'unique_together': {('user', 'token')}},
        ),
    ]
