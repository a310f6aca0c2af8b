"""
Test suite for Catalog module
Tests: materials, serial stock sync, manual add, CSV import, discard
"""
from datetime import date

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.permissions import ROLE_STOREKEEPER, ROLE_READER, ROLE_BUYER
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.catalog.models import (
    Material, Serial, CATEGORY_SCREEN, CATEGORY_OTHER,
    SERIAL_IN_STOCK, SERIAL_ASSIGNED, SERIAL_IN_REPAIR, SERIAL_RETIRED,
)
from backend.catalog.services import (
    import_serials_csv, build_csv_template, parse_flexible_date, add_manual_serial, SerialError,
    CSV_COLUMNS,
)


class MaterialModelTests(TestCase):
    """Test Material model methods"""

    def test_low_stock(self):
        material = TestDataFactory.create_material(stock=2, min_stock=3)
        self.assertTrue(material.is_low_stock)

    def test_no_threshold_is_never_low(self):
        material = TestDataFactory.create_material(stock=0, min_stock=0)
        self.assertFalse(material.is_low_stock)


class ParseDateTests(TestCase):

    def test_iso(self):
        self.assertEqual(parse_flexible_date('2025-01-15'), date(2025, 1, 15))

    def test_iso_datetime_is_truncated(self):
        self.assertEqual(parse_flexible_date('2025-01-15T10:00:00'), date(2025, 1, 15))

    def test_french_format(self):
        self.assertEqual(parse_flexible_date('15/01/2025'), date(2025, 1, 15))

    def test_empty(self):
        self.assertIsNone(parse_flexible_date(''))

    def test_garbage(self):
        with self.assertRaises(ValueError):
            parse_flexible_date('demain')


class MaterialAPITests(TestCase):
    """Test material endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user(role=ROLE_STOREKEEPER)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_material(self):
        data = {'name': 'Dell P2422H', 'category': CATEGORY_SCREEN, 'min_stock': 2, 'unit_price': '189.00'}
        response = self.client.post('/api/v1/materials/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        material = Material.objects.get(name='Dell P2422H')
        self.assertEqual(material.stock, 0)

    def test_stock_is_read_only(self):
        data = {'name': 'Souris', 'category': 'Souris', 'stock': 50}
        response = self.client.post('/api/v1/materials/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Material.objects.get(name='Souris').stock, 0)

    def test_filter_by_category(self):
        TestDataFactory.create_material(name='Écran A', category=CATEGORY_SCREEN)
        TestDataFactory.create_material(name='Divers', category=CATEGORY_OTHER)
        response = self.client.get('/api/v1/materials/', {'category': CATEGORY_SCREEN})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_search_matches_every_word(self):
        TestDataFactory.create_material(name='Latitude 5440')
        TestDataFactory.create_material(name='Latitude 7440')
        response = self.client.get('/api/v1/materials/', {'search': 'latitude 54'})
        self.assertEqual(response.data['count'], 1)

    def test_delete_material_with_serials_refused(self):
        material = TestDataFactory.create_material(stock=1)
        TestDataFactory.create_serial(material=material)
        response = self.client.delete(f'/api/v1/materials/{material.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(Material.objects.filter(pk=material.pk).exists())

    def test_reader_cannot_create(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_READER))
        response = self.client.post('/api/v1/materials/', {'name': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_buyer_cannot_create(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_BUYER))
        response = self.client.post('/api/v1/materials/', {'name': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_reader_can_list(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_READER))
        response = self.client.get('/api/v1/materials/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class SerialStockSyncTests(TestCase):
    """Stock follows serial creation, status changes and deletion"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        self.material = TestDataFactory.create_material(stock=0)

    def test_create_in_stock_serial_increments(self):
        data = {'serial_number': 'SN-1', 'material': self.material.id}
        response = self.client.post('/api/v1/serials/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.material.refresh_from_db()
        self.assertEqual(self.material.stock, 1)

    def test_status_change_out_of_stock_decrements(self):
        self.material.stock = 1
        self.material.save()
        serial = TestDataFactory.create_serial(material=self.material)
        response = self.client.patch(f'/api/v1/serials/{serial.id}/', {'status': SERIAL_IN_REPAIR}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.material.refresh_from_db()
        self.assertEqual(self.material.stock, 0)

    def test_delete_in_stock_serial_decrements(self):
        self.material.stock = 1
        self.material.save()
        serial = TestDataFactory.create_serial(material=self.material)
        response = self.client.delete(f'/api/v1/serials/{serial.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.material.refresh_from_db()
        self.assertEqual(self.material.stock, 0)

    def test_filter_by_status(self):
        TestDataFactory.create_serial(material=self.material, status=SERIAL_IN_STOCK)
        TestDataFactory.create_serial(material=self.material, status=SERIAL_IN_REPAIR)
        response = self.client.get('/api/v1/serials/', {'status': SERIAL_IN_REPAIR})
        self.assertEqual(response.data['count'], 1)


class ManualSerialTests(TestCase):
    """Manual serial registration"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        self.material = TestDataFactory.create_material(stock=0)

    def test_manual_add(self):
        data = {
            'material': self.material.id,
            'serial_number': 'MAN-001',
            'purchase_date': '2025-01-15',
            'warranty_end': '15/01/2028',
        }
        response = self.client.post('/api/v1/serials/manual/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        serial = Serial.objects.get(serial_number='MAN-001')
        self.assertEqual(serial.warranty_end, date(2028, 1, 15))
        self.material.refresh_from_db()
        self.assertEqual(self.material.stock, 1)
        self.assertTrue(AuditLog.objects.filter(action='serial_add', serial_number='MAN-001').exists())

    def test_duplicate_is_rejected_with_409(self):
        TestDataFactory.create_serial(serial_number='MAN-DUP')
        response = self.client.post(
            '/api/v1/serials/manual/',
            {'material': self.material.id, 'serial_number': 'MAN-DUP'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertIn('existe déjà', response.data['error'])
        self.material.refresh_from_db()
        self.assertEqual(self.material.stock, 0)

    def test_warranty_before_purchase_is_rejected(self):
        with self.assertRaises(SerialError):
            add_manual_serial(
                self.material, 'MAN-002',
                purchase_date=date(2025, 6, 1),
                warranty_end=date(2025, 1, 1),
            )
        self.assertFalse(Serial.objects.filter(serial_number='MAN-002').exists())


class CSVImportTests(TestCase):
    """Bulk serial import from CSV"""

    HEADER = ','.join(CSV_COLUMNS)

    def test_import_tally(self):
        TestDataFactory.create_serial(serial_number='EXISTING-1')
        content = '\n'.join([
            self.HEADER,
            'MacBook Pro 14,PC Portable,MBP-001,2025-01-15,2028-01-15,,Paris,',
            'MacBook Pro 14,PC Portable,MBP-002,15/01/2025,,,Paris,',
            'Dell P2422H,Écran,EXISTING-1,2025-01-15,,,,',
            'Dell P2422H,Écran,DELL-001,pas une date,,,,',
            'Gadget,Inconnue,GAD-001,,,,,',
            ',PC Portable,NO-NAME,,,,,',
        ])
        with self.captureOnCommitCallbacks(execute=True):
            result = import_serials_csv(content)

        self.assertEqual(result.success, 3)
        self.assertEqual(len(result.errors), 2)
        self.assertEqual(result.errors[0], 'Ligne 4: Numéro de série "EXISTING-1" existe déjà')
        self.assertEqual(result.errors[1], "Ligne 5: Date d'achat invalide")

        macbook = Material.objects.get(name='MacBook Pro 14')
        self.assertEqual(macbook.stock, 2)
        self.assertEqual(Material.objects.filter(name='MacBook Pro 14').count(), 1)
        # Unknown category falls back to "Autre"
        self.assertEqual(Material.objects.get(name='Gadget').category, CATEGORY_OTHER)
        self.assertFalse(Serial.objects.filter(serial_number='NO-NAME').exists())

    def test_existing_material_is_reused(self):
        material = TestDataFactory.create_material(name='Dell P2422H', stock=3)
        content = '\n'.join([self.HEADER, 'Dell P2422H,Écran,DELL-100,,,,,'])
        result = import_serials_csv(content)
        self.assertEqual(result.success, 1)
        material.refresh_from_db()
        self.assertEqual(material.stock, 4)

    def test_headerless_file(self):
        result = import_serials_csv('Souris MX,Souris,MX-1,,,,,')
        self.assertEqual(result.success, 1)

    def test_template_has_header_and_examples(self):
        lines = build_csv_template().strip().splitlines()
        self.assertEqual(lines[0], self.HEADER)
        self.assertEqual(len(lines), 3)

    def test_import_endpoint(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        content = '\n'.join([self.HEADER, 'ThinkPad T14,PC Portable,TP-001,,,,,']).encode('utf-8')
        upload = SimpleUploadedFile('serials.csv', content, content_type='text/csv')
        response = client.post('/api/v1/serials/import/', {'file': upload}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['success'], 1)
        self.assertEqual(response.data['errors'], [])

    def test_import_endpoint_rejects_non_csv(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        upload = SimpleUploadedFile('serials.txt', b'x', content_type='text/plain')
        response = client.post('/api/v1/serials/import/', {'file': upload}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_import_endpoint_empty_file(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        upload = SimpleUploadedFile('serials.csv', self.HEADER.encode('utf-8'), content_type='text/csv')
        response = client.post('/api/v1/serials/import/', {'file': upload}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_template_endpoint(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        response = client.get('/api/v1/serials/import/template/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('attachment', response['Content-Disposition'])


class DiscardSerialTests(TestCase):
    """Mise au rebut"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))

    def test_discard_in_stock_serial(self):
        material = TestDataFactory.create_material(stock=1)
        serial = TestDataFactory.create_serial(material=material)
        response = self.client.post(f'/api/v1/serials/{serial.id}/discard/', {'notes': 'Écran cassé'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        serial.refresh_from_db()
        material.refresh_from_db()
        self.assertEqual(serial.status, SERIAL_RETIRED)
        self.assertEqual(serial.notes, 'Écran cassé')
        self.assertEqual(material.stock, 0)

    def test_discard_assigned_serial_closes_assignment(self):
        material = TestDataFactory.create_material(stock=0)
        serial = TestDataFactory.create_serial(material=material, status=SERIAL_ASSIGNED)
        assignment = TestDataFactory.create_assignment(serial)
        response = self.client.post(f'/api/v1/serials/{serial.id}/discard/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        assignment.refresh_from_db()
        material.refresh_from_db()
        self.assertIsNotNone(assignment.end_date)
        self.assertLessEqual(assignment.end_date, timezone.now())
        self.assertEqual(material.stock, 0)

    def test_retired_serial_cannot_be_discarded(self):
        serial = TestDataFactory.create_serial(status=SERIAL_RETIRED)
        response = self.client.post(f'/api/v1/serials/{serial.id}/discard/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)
