"""
Test suite for Parties module
Tests: supplier CRUD and role gating
"""
from django.test import TestCase
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.permissions import ROLE_BUYER, ROLE_STOREKEEPER
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.parties.models import Supplier


class SupplierAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_BUYER))

    def test_create_supplier(self):
        data = {'name': 'Dell France', 'contact': 'Service commercial', 'email': 'ventes@dell.test'}
        response = self.client.post('/api/v1/suppliers/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(Supplier.objects.filter(name='Dell France').exists())
        self.assertTrue(AuditLog.objects.filter(model_name='Supplier', action='create').exists())

    def test_duplicate_name_rejected(self):
        TestDataFactory.create_supplier(name='Dell France')
        response = self.client.post('/api/v1/suppliers/', {'name': 'Dell France'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_search(self):
        TestDataFactory.create_supplier(name='Dell France')
        TestDataFactory.create_supplier(name='LDLC Pro')
        response = self.client.get('/api/v1/suppliers/', {'search': 'ldlc'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_update_and_delete(self):
        supplier = TestDataFactory.create_supplier(name='HP')
        response = self.client.patch(f'/api/v1/suppliers/{supplier.id}/', {'phone': '0102030405'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        supplier.refresh_from_db()
        self.assertEqual(supplier.phone, '0102030405')

        response = self.client.delete(f'/api/v1/suppliers/{supplier.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Supplier.objects.filter(pk=supplier.pk).exists())

    def test_storekeeper_cannot_write(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        response = self.client.post('/api/v1/suppliers/', {'name': 'Lenovo'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
