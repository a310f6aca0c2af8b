"""
Test suite for Assignments module
Tests: assign/unassign status transitions and stock movements
"""
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.permissions import ROLE_STOREKEEPER, ROLE_READER, ROLE_BUYER
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.catalog.models import SERIAL_IN_STOCK, SERIAL_ASSIGNED, SERIAL_IN_REPAIR
from backend.assignments.models import Assignment
from backend.assignments.services import assign_serial, unassign, AssignmentError


class AssignmentServiceTests(TestCase):

    def setUp(self):
        self.material = TestDataFactory.create_material(stock=1)
        self.serial = TestDataFactory.create_serial(material=self.material, serial_number='LAT-001')

    def test_assign_and_unassign(self):
        assignment = assign_serial(self.serial.id, 'Jean Dupont', department='Compta')

        self.serial.refresh_from_db()
        self.material.refresh_from_db()
        self.assertEqual(self.serial.status, SERIAL_ASSIGNED)
        self.assertEqual(self.material.stock, 0)
        self.assertEqual(assignment.serial_number, 'LAT-001')
        self.assertTrue(assignment.is_active)

        unassign(assignment.id, notes='Départ')

        assignment.refresh_from_db()
        self.serial.refresh_from_db()
        self.material.refresh_from_db()
        self.assertFalse(assignment.is_active)
        self.assertEqual(assignment.notes, 'Départ')
        self.assertEqual(self.serial.status, SERIAL_IN_STOCK)
        self.assertEqual(self.material.stock, 1)

    def test_only_in_stock_serials_can_be_assigned(self):
        self.serial.status = SERIAL_IN_REPAIR
        self.serial.save()
        with self.assertRaises(AssignmentError):
            assign_serial(self.serial.id, 'Jean Dupont')
        self.assertFalse(Assignment.objects.exists())

    def test_unknown_serial(self):
        with self.assertRaises(AssignmentError) as ctx:
            assign_serial(99999, 'Jean Dupont')
        self.assertEqual(ctx.exception.status_code, 404)

    def test_unassign_twice_is_rejected(self):
        assignment = assign_serial(self.serial.id, 'Jean Dupont')
        unassign(assignment.id)
        with self.assertRaises(AssignmentError):
            unassign(assignment.id)
        self.material.refresh_from_db()
        self.assertEqual(self.material.stock, 1)


class AssignmentAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        self.material = TestDataFactory.create_material(stock=1)
        self.serial = TestDataFactory.create_serial(material=self.material)

    def test_assign_endpoint(self):
        data = {'serial': self.serial.id, 'assigned_to': 'Marie Martin', 'department': 'Achats'}
        response = self.client.post('/api/v1/assignments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['serial_status'], SERIAL_ASSIGNED)
        self.assertTrue(response.data['is_active'])
        self.assertTrue(AuditLog.objects.filter(action='serial_assign').exists())

    def test_assign_not_in_stock_is_400(self):
        self.serial.status = SERIAL_ASSIGNED
        self.serial.save()
        response = self.client.post(
            '/api/v1/assignments/', {'serial': self.serial.id, 'assigned_to': 'X'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)

    def test_unassign_endpoint(self):
        assignment = assign_serial(self.serial.id, 'Marie Martin')
        response = self.client.post(f'/api/v1/assignments/{assignment.id}/unassign/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['is_active'])
        self.assertEqual(response.data['serial_status'], SERIAL_IN_STOCK)

    def test_active_filter(self):
        active_serial = TestDataFactory.create_serial(material=self.material, status=SERIAL_ASSIGNED)
        TestDataFactory.create_assignment(active_serial)
        TestDataFactory.create_assignment(self.serial, end_date=timezone.now())

        response = self.client.get('/api/v1/assignments/', {'active': 'true'})
        self.assertEqual(response.data['count'], 1)
        response = self.client.get('/api/v1/assignments/', {'active': 'false'})
        self.assertEqual(response.data['count'], 1)

    def test_active_assignment_cannot_be_deleted(self):
        assignment = assign_serial(self.serial.id, 'Marie Martin')
        response = self.client.delete(f'/api/v1/assignments/{assignment.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_reader_and_buyer_cannot_assign(self):
        for role in (ROLE_READER, ROLE_BUYER):
            self.client.authenticate_user(TestDataFactory.create_user(role=role))
            response = self.client.post(
                '/api/v1/assignments/', {'serial': self.serial.id, 'assigned_to': 'X'}, format='json'
            )
            self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.serial.refresh_from_db()
        self.assertEqual(self.serial.status, SERIAL_IN_STOCK)
