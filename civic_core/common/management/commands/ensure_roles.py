# civic_core/common/management/commands/ensure_roles.py

from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand

from civic_core.common.permissions import ROLE_GROUPS


class Command(BaseCommand):
    help = "Create the staff role groups (ADMIN, BILLING, SALES, READONLY). Safe to run on every deploy."

    def handle(self, *args, **options):
        created = []
        for name in ROLE_GROUPS:
            _, was_created = Group.objects.get_or_create(name=name)
            if was_created:
                created.append(name)
                if options["verbosity"] > 1:
                    self.stdout.write(f"  + {name}")

        self.stdout.write(self.style.SUCCESS(f"Roles ensured. Newly created: {len(created)}"))
