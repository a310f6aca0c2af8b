"""
Test suite for Reports module
Tests: dashboard statistics and cache invalidation
"""
from datetime import timedelta

from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.catalog.models import CATEGORY_SCREEN, SERIAL_IN_STOCK, SERIAL_ASSIGNED
from backend.purchasing.models import ORDER_DELIVERED
from backend.reports.views import compute_dashboard_stats


class DashboardStatsTests(TestCase):

    def test_statistics(self):
        today = timezone.localdate()
        screen = TestDataFactory.create_material(category=CATEGORY_SCREEN, stock=2)
        TestDataFactory.create_material(stock=1)
        TestDataFactory.create_serial(material=screen, warranty_end=today + timedelta(days=30))
        TestDataFactory.create_serial(material=screen, warranty_end=today + timedelta(days=200))
        TestDataFactory.create_serial(material=screen, warranty_end=today - timedelta(days=1))
        assigned = TestDataFactory.create_serial(material=screen, status=SERIAL_ASSIGNED)
        TestDataFactory.create_assignment(assigned)
        TestDataFactory.create_assignment(assigned, end_date=timezone.now())
        TestDataFactory.create_order()
        TestDataFactory.create_order(status=ORDER_DELIVERED)

        stats = compute_dashboard_stats(today=today)

        self.assertEqual(stats['total_stock'], 3)
        self.assertEqual(stats['serials_in_stock'], 3)
        self.assertEqual(stats['pending_orders'], 1)
        self.assertEqual(stats['active_assignments'], 1)
        # Only the warranty ending within 90 days counts
        self.assertEqual(stats['warranty_warnings'], 1)
        self.assertEqual(stats['by_category'][CATEGORY_SCREEN], {'materials': 1, 'stock': 2})
        self.assertEqual(stats['by_serial_status'][SERIAL_IN_STOCK], 3)
        self.assertEqual(stats['by_order_status'][ORDER_DELIVERED], 1)


class DashboardAPITests(TestCase):

    def setUp(self):
        cache.clear()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user())

    def tearDown(self):
        cache.clear()

    def test_dashboard_is_cached(self):
        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['X-Cache'], 'MISS')

        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response['X-Cache'], 'HIT')

    def test_cache_dropped_on_change(self):
        self.client.get('/api/v1/reports/dashboard/')

        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_material(stock=5)

        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response['X-Cache'], 'MISS')
        self.assertEqual(response.data['total_stock'], 5)

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
