"""
Test suite for Core module
Tests: authentication, roles and capabilities, user management, bulk user import, audit log, search
"""
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.permissions import (
    get_user_role, set_user_role, get_capabilities,
    ROLE_ADMIN, ROLE_STOREKEEPER, ROLE_BUYER, ROLE_READER,
)
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import summarize_serial_numbers

User = get_user_model()


class RoleTests(TestCase):
    """Role resolution through groups"""

    def test_user_without_group_is_reader(self):
        user = TestDataFactory.create_user(role=None)
        self.assertEqual(get_user_role(user), ROLE_READER)

    def test_superuser_is_admin(self):
        user = TestDataFactory.create_user(is_superuser=True)
        self.assertEqual(get_user_role(user), ROLE_ADMIN)

    def test_set_role_replaces_previous(self):
        user = TestDataFactory.create_user(role=ROLE_BUYER)
        set_user_role(user, ROLE_STOREKEEPER)
        self.assertEqual(get_user_role(user), ROLE_STOREKEEPER)
        self.assertEqual(user.groups.count(), 1)

    def test_unknown_role(self):
        user = TestDataFactory.create_user()
        with self.assertRaises(ValueError):
            set_user_role(user, 'superviseur')

    def test_capabilities(self):
        caps = get_capabilities(TestDataFactory.create_user(role=ROLE_BUYER))
        self.assertTrue(caps['can_manage_orders'])
        self.assertTrue(caps['can_receive_deliveries'])
        self.assertFalse(caps['can_manage_stock'])
        self.assertFalse(caps['can_access_settings'])


class AuthAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_login_returns_tokens(self):
        TestDataFactory.create_user(username='jean@stock.local', password='secret123', role=ROLE_STOREKEEPER)
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'jean@stock.local', 'password': 'secret123'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_login_wrong_password(self):
        TestDataFactory.create_user(username='jean@stock.local', password='secret123')
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'jean@stock.local', 'password': 'nope'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me(self):
        user = TestDataFactory.create_user(role=ROLE_STOREKEEPER)
        self.client.authenticate_user(user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['role'], ROLE_STOREKEEPER)
        self.assertTrue(response.data['can_manage_stock'])


class UserManagementTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_user(role=ROLE_ADMIN)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_settings_are_admin_only(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_BUYER))
        self.assertEqual(self.client.get('/api/v1/users/').status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(self.client.get('/api/v1/audit-logs/').status_code, status.HTTP_403_FORBIDDEN)

    def test_update_role(self):
        user = TestDataFactory.create_user(role=ROLE_READER)
        response = self.client.patch(f'/api/v1/users/{user.id}/', {'role': ROLE_BUYER}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(get_user_role(user), ROLE_BUYER)

    def test_cannot_delete_self(self):
        response = self.client.delete(f'/api/v1/users/{self.admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(User.objects.filter(pk=self.admin.pk).exists())


class BulkUserCreateTests(TestCase):

    URL = '/api/v1/users/bulk-create/'

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_ADMIN))

    def test_bulk_create(self):
        TestDataFactory.create_user(username='deja@stock.local', email='deja@stock.local')
        users = [
            {'email': 'Alice@Stock.local', 'display_name': 'Alice', 'role': ROLE_BUYER, 'password': 'alice123'},
            {'email': 'bob@stock.local', 'display_name': 'Bob'},
            {'email': 'deja@stock.local', 'display_name': 'Déjà là'},
        ]
        response = self.client.post(self.URL, {'users': users}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['success'], 2)
        self.assertEqual(response.data['errors'], [{'email': 'deja@stock.local', 'error': 'Utilisateur existe déjà'}])

        alice = User.objects.get(email='alice@stock.local')
        self.assertTrue(alice.check_password('alice123'))
        self.assertEqual(get_user_role(alice), ROLE_BUYER)

        bob = User.objects.get(email='bob@stock.local')
        self.assertEqual(get_user_role(bob), ROLE_READER)
        created_bob = next(u for u in response.data['created_users'] if u['email'] == 'bob@stock.local')
        self.assertEqual(len(created_bob['generated_password']), 12)
        self.assertTrue(bob.check_password(created_bob['generated_password']))
        self.assertTrue(AuditLog.objects.filter(action='user_import').exists())

    def test_invalid_entry_rejects_everything(self):
        users = [
            {'email': 'ok@stock.local', 'display_name': 'Ok'},
            {'email': 'pas-un-email', 'display_name': 'Ko'},
        ]
        response = self.client.post(self.URL, {'users': users}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Entrée 2 invalide.')
        self.assertFalse(User.objects.filter(email='ok@stock.local').exists())

    def test_invalid_role(self):
        users = [{'email': 'x@stock.local', 'display_name': 'X', 'role': 'chef'}]
        response = self.client.post(self.URL, {'users': users}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_missing_display_name(self):
        users = [{'email': 'x@stock.local', 'display_name': '   '}]
        response = self.client.post(self.URL, {'users': users}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_more_than_one_batch(self):
        users = [{'email': f'user{i}@stock.local', 'display_name': f'User {i}'} for i in range(23)]
        response = self.client.post(self.URL, {'users': users}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['success'], 23)

    def test_empty_body(self):
        response = self.client.post(self.URL, {'users': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class AuditLogTests(TestCase):

    def test_summarize_serial_numbers_is_bounded(self):
        summary = summarize_serial_numbers([f'SERIAL-{i:05d}' for i in range(500)])
        self.assertLessEqual(len(summary), 1000)
        self.assertTrue(summary.startswith('SERIAL-00000'))

    def test_audit_log_list_filters_by_action(self):
        admin = TestDataFactory.create_user(role=ROLE_ADMIN)
        AuditLog.objects.create(user=admin, action='create', model_name='Order', object_id='1')
        AuditLog.objects.create(user=admin, action='delete', model_name='Order', object_id='2')
        client = AuthenticatedAPIClient()
        client.authenticate_user(admin)
        response = client.get('/api/v1/audit-logs/', {'action': 'delete'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)


class GlobalSearchTests(TestCase):

    def test_search_across_models(self):
        material = TestDataFactory.create_material(name='ThinkPad X1')
        TestDataFactory.create_serial(material=material, serial_number='TPX1-0001')
        TestDataFactory.create_order(reference='CMD-THINK')
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_user())

        response = client.get('/api/v1/search/', {'q': 'think'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['materials']), 1)
        self.assertEqual(len(response.data['serials']), 1)
        self.assertEqual(len(response.data['orders']), 1)


class ManagementCommandTests(TestCase):

    def test_seed_demo_users(self):
        call_command('seed_demo_users', stdout=StringIO())
        user = User.objects.get(username='magasinier@stock.local')
        self.assertEqual(get_user_role(user), ROLE_STOREKEEPER)
        self.assertTrue(user.check_password('mag123'))
        self.assertEqual(User.objects.filter(email__endswith='@stock.local').count(), 4)
