from django.core.management import call_command
from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model

from backend.core.permissions import set_user_role, ROLE_ADMIN, ROLE_STOREKEEPER, ROLE_BUYER, ROLE_READER

User = get_user_model()

DEMO_USERS = [
    {'email': 'admin@stock.local', 'password': 'admin123', 'display_name': 'Administrateur', 'role': ROLE_ADMIN},
    {'email': 'magasinier@stock.local', 'password': 'mag123', 'display_name': 'Jean Dupont', 'role': ROLE_STOREKEEPER},
    {'email': 'acheteur@stock.local', 'password': 'ach123', 'display_name': 'Marie Martin', 'role': ROLE_BUYER},
    {'email': 'lecteur@stock.local', 'password': 'lec123', 'display_name': 'Pierre Durand', 'role': ROLE_READER},
]


class Command(BaseCommand):
    help = 'Create one demo account per role (development only)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--reset-passwords',
            action='store_true',
            help='Reset the password of demo accounts that already exist',
        )

    def handle(self, *args, **options):
        call_command('create_user_groups', verbosity=0, stdout=self.stdout)

        for entry in DEMO_USERS:
            user, created = User.objects.get_or_create(
                username=entry['email'],
                defaults={'email': entry['email'], 'display_name': entry['display_name']},
            )
            if created or options['reset_passwords']:
                user.set_password(entry['password'])
                user.save()
            set_user_role(user, entry['role'])

            if created:
                self.stdout.write(self.style.SUCCESS(f'✓ Created {entry["email"]} ({entry["role"]})'))
            else:
                self.stdout.write(f'  Already exists: {entry["email"]} ({entry["role"]})')

        self.stdout.write(self.style.SUCCESS('\nDemo users ready'))
