from django.core.management.base import BaseCommand
from django.contrib.auth.models import Group, Permission

from backend.core.permissions import ROLE_ADMIN, ROLE_STOREKEEPER, ROLE_BUYER, ROLE_READER


class Command(BaseCommand):
    help = 'Create the role groups: admin, magasinier, acheteur, lecteur'

    def handle(self, *args, **options):
        groups_config = [
            {
                'name': ROLE_ADMIN,
                'description': 'Full access, including users, suppliers and the audit log',
                'apps': '*',
            },
            {
                'name': ROLE_STOREKEEPER,
                'description': 'Materials, serials, assignments and delivery reception',
                'apps': ['catalog', 'assignments'],
            },
            {
                'name': ROLE_BUYER,
                'description': 'Orders, quotes, suppliers and delivery reception',
                'apps': ['purchasing', 'parties'],
            },
            {
                'name': ROLE_READER,
                'description': 'Read-only access',
                'apps': [],
            },
        ]

        created_count = 0
        existing_count = 0

        for group_config in groups_config:
            group, created = Group.objects.get_or_create(name=group_config['name'])

            if created:
                self.stdout.write(self.style.SUCCESS(f'✓ Created group: {group_config["name"]}'))
                created_count += 1
            else:
                self.stdout.write(f'  Group already exists: {group_config["name"]}')
                existing_count += 1

            # API access is decided by the group name; model permissions only matter in the Django admin
            if group_config['apps'] == '*':
                group.permissions.set(Permission.objects.all())
                self.stdout.write(f'  Added all permissions to {group_config["name"]} group')
            elif group_config['apps']:
                group.permissions.set(Permission.objects.filter(content_type__app_label__in=group_config['apps']))
                self.stdout.write(f'  Added {", ".join(group_config["apps"])} permissions to {group_config["name"]} group')
            else:
                group.permissions.set(Permission.objects.filter(codename__startswith='view_'))
                self.stdout.write(f'  Added view permissions to {group_config["name"]} group')

        self.stdout.write(self.style.SUCCESS(
            f'\nCompleted: {created_count} groups created, {existing_count} groups already existed'
        ))
