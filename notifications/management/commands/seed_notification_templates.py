from django.core.management.base import BaseCommand

from notifications.messages import iter_default_templates
from notifications.models import NotificationTemplate


class Command(BaseCommand):
    help = "Seed default bulletin notification templates (one per tier, channel and language)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--overwrite",
            action="store_true",
            help="Replace templates already edited in the database.",
        )

    def handle(self, *args, **options):
        created_count = updated_count = 0
        for key, tier, channel, language, template in iter_default_templates():
            defaults = {
                "tier": tier,
                "channel": channel,
                "language": language,
                "subject_template": template.subject,
                "body_template": template.body,
            }
            if options["overwrite"]:
                obj, created = NotificationTemplate.objects.update_or_create(key=key, defaults=defaults)
            else:
                obj, created = NotificationTemplate.objects.get_or_create(key=key, defaults=defaults)

            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"Template créé: {key}"))
            elif options["overwrite"]:
                updated_count += 1
                self.stdout.write(self.style.WARNING(f"Template mis à jour: {key}"))

        self.stdout.write(f"{created_count} créé(s), {updated_count} mis à jour.")
