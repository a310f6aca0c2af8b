"""
Test suite for Purchasing module
Tests: order totals, delivery reconciliation, quote extraction retries, quote documents, role gating
"""
import json
from decimal import Decimal
from unittest import mock

import requests
from django.db import DatabaseError
from django.test import TestCase
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.permissions import ROLE_ADMIN, ROLE_BUYER, ROLE_STOREKEEPER, ROLE_READER
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.catalog.models import Material, Serial, CATEGORY_OTHER, SERIAL_IN_STOCK
from backend.purchasing.delivery import (
    confirm_delivery, get_delivery_progress, DeliveryError, STATE_PARTIAL, STATE_COMPLETE,
)
from backend.purchasing.models import Order, OrderLine, ORDER_DELIVERED, ORDER_REQUESTED, ORDER_SUPPLIER_ORDERED
from backend.purchasing.quote_document import build_quote_context, QuoteDocumentError
from backend.purchasing.quote_extraction import (
    QuoteExtractionClient, QuoteRateLimitError, QuoteCreditsError, QuoteServiceUnavailableError,
    QuoteExtractionNotConfigured, parse_completion,
)


def make_completion(payload):
    """Chat-completions body whose tool call carries `payload`"""
    return {
        'choices': [{
            'message': {
                'role': 'assistant',
                'tool_calls': [{
                    'type': 'function',
                    'function': {'name': 'extract_quote_data', 'arguments': json.dumps(payload)},
                }],
            }
        }]
    }


def make_response(status_code, body=None):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.text = json.dumps(body or {})
    return response


QUOTE_PAYLOAD = {
    'supplier': 'Dell France',
    'reference': 'DEV-2024-001',
    'lines': [
        {'materialName': 'Latitude 5440', 'quantity': 2, 'unitPrice': 950.0},
        {'materialName': 'Dock WD19', 'quantity': 2, 'unitPrice': 180.5},
    ],
    'totalAmount': 2713.2,
}


class OrderModelTests(TestCase):
    """Test Order and OrderLine model methods"""

    def test_order_totals(self):
        order = TestDataFactory.create_order(lines=[
            {'material_name': 'Écran 24"', 'quantity': 2, 'unit_price': Decimal('150.00')},
            {'material_name': 'Clavier', 'quantity': 1, 'unit_price': Decimal('50.00')},
        ])
        self.assertEqual(order.get_subtotal(), Decimal('350.00'))
        self.assertEqual(order.get_total(), Decimal('420.00'))

    def test_line_fully_delivered(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Souris', 'quantity': 2, 'delivered_quantity': 2}])
        self.assertTrue(order.lines.get().is_fully_delivered)

    def test_default_status(self):
        order = TestDataFactory.create_order()
        self.assertEqual(order.status, ORDER_REQUESTED)


class DeliveryReconciliationTests(TestCase):
    """Test confirm_delivery directly"""

    def setUp(self):
        self.user = TestDataFactory.create_user(role=ROLE_STOREKEEPER)

    def test_full_delivery_marks_order_delivered(self):
        order = TestDataFactory.create_order(lines=[
            {'material_name': 'Latitude 5440', 'quantity': 2},
            {'material_name': 'Dock WD19', 'quantity': 1},
        ])
        first, second = order.lines.order_by('id')

        result = confirm_delivery(order.pk, {first.id: ['SN-A1', 'SN-A2'], second.id: ['SN-B1']}, user=self.user)

        self.assertTrue(result.fully_delivered)
        self.assertTrue(result.status_changed)
        self.assertEqual(result.errors, [])
        self.assertEqual(sorted(result.created_serials), ['SN-A1', 'SN-A2', 'SN-B1'])
        order.refresh_from_db()
        self.assertEqual(order.status, ORDER_DELIVERED)
        self.assertEqual(Serial.objects.filter(order_line__order=order).count(), 3)

    def test_partial_delivery_keeps_status(self):
        order = TestDataFactory.create_order(
            status=ORDER_SUPPLIER_ORDERED,
            lines=[{'material_name': 'Latitude 5440', 'quantity': 3}],
        )
        line = order.lines.get()

        result = confirm_delivery(order.pk, {line.id: ['SN-1', 'SN-2']}, user=self.user)

        self.assertFalse(result.fully_delivered)
        self.assertFalse(result.status_changed)
        order.refresh_from_db()
        line.refresh_from_db()
        self.assertEqual(order.status, ORDER_SUPPLIER_ORDERED)
        self.assertEqual(line.delivered_quantity, 2)
        self.assertEqual(get_delivery_progress(order)['lines'][0]['state'], STATE_PARTIAL)

    def test_two_of_three_then_last_one_completes(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Casque Jabra', 'quantity': 3}])
        line = order.lines.get()

        confirm_delivery(order.pk, {line.id: ['SN-1', 'SN-2']}, user=self.user)
        order.refresh_from_db()
        self.assertNotEqual(order.status, ORDER_DELIVERED)

        result = confirm_delivery(order.pk, {line.id: ['SN-3']}, user=self.user)
        self.assertTrue(result.fully_delivered)
        order.refresh_from_db()
        line.refresh_from_db()
        self.assertEqual(order.status, ORDER_DELIVERED)
        self.assertEqual(line.delivered_quantity, 3)
        self.assertEqual(get_delivery_progress(order)['lines'][0]['state'], STATE_COMPLETE)

    def test_material_created_exactly_once(self):
        order = TestDataFactory.create_order(lines=[
            {'material_name': 'Webcam Logitech C920', 'quantity': 4, 'unit_price': Decimal('79.90')},
        ])
        line = order.lines.get()

        confirm_delivery(order.pk, {line.id: ['W-1', 'W-2']}, user=self.user)
        confirm_delivery(order.pk, {line.id: ['W-3']}, user=self.user)

        materials = Material.objects.filter(name='Webcam Logitech C920')
        self.assertEqual(materials.count(), 1)
        material = materials.get()
        line.refresh_from_db()
        self.assertEqual(line.material_id, material.id)
        self.assertEqual(material.category, CATEGORY_OTHER)
        self.assertEqual(material.unit_price, Decimal('79.90'))
        self.assertEqual(material.stock, 3)
        self.assertEqual(Serial.objects.filter(material=material, status=SERIAL_IN_STOCK).count(), 3)

    def test_existing_material_is_reused(self):
        material = TestDataFactory.create_material(name='Latitude 5440', stock=5)
        order = TestDataFactory.create_order(lines=[
            {'material_name': 'Latitude 5440', 'quantity': 1, 'material': material},
        ])
        line = order.lines.get()

        result = confirm_delivery(order.pk, {line.id: ['SN-X']}, user=self.user)

        self.assertFalse(result.line_results[0].material_created)
        material.refresh_from_db()
        self.assertEqual(material.stock, 6)
        self.assertEqual(Material.objects.filter(name='Latitude 5440').count(), 1)

    def test_duplicate_serial_is_not_counted(self):
        existing = TestDataFactory.create_serial(serial_number='DUP-001')
        order = TestDataFactory.create_order(lines=[{'material_name': 'Souris MX', 'quantity': 2}])
        line = order.lines.get()

        result = confirm_delivery(order.pk, {line.id: ['DUP-001', 'NEW-001']}, user=self.user)

        line.refresh_from_db()
        self.assertEqual(line.delivered_quantity, 1)
        self.assertEqual(result.created_serials, ['NEW-001'])
        self.assertEqual(len(result.errors), 1)
        self.assertIn('DUP-001', result.errors[0])
        self.assertFalse(result.fully_delivered)
        # The existing serial keeps its original material
        existing.refresh_from_db()
        self.assertNotEqual(existing.material.name, 'Souris MX')

    def test_empty_submission_writes_nothing(self):
        order = TestDataFactory.create_order(lines=[
            {'material_name': 'Écran', 'quantity': 1, 'delivered_quantity': 1},
        ])
        line = order.lines.get()
        materials_before = Material.objects.count()

        result = confirm_delivery(order.pk, {line.id: ['', '   ']}, user=self.user)

        self.assertTrue(result.nothing_submitted)
        self.assertFalse(result.fully_delivered)
        order.refresh_from_db()
        self.assertEqual(order.status, ORDER_REQUESTED)
        self.assertEqual(Material.objects.count(), materials_before)
        self.assertFalse(Serial.objects.exists())

    def test_unknown_line_is_reported(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Clavier', 'quantity': 1}])
        other = TestDataFactory.create_order(lines=[{'material_name': 'Souris', 'quantity': 1}])
        foreign_line = other.lines.get()

        result = confirm_delivery(order.pk, {foreign_line.id: ['SN-Z']}, user=self.user)

        self.assertEqual(result.created_serials, [])
        self.assertIn('introuvable', result.errors[0])
        self.assertFalse(Serial.objects.filter(serial_number='SN-Z').exists())

    def test_over_delivery_is_recorded(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Câble HDMI', 'quantity': 1}])
        line = order.lines.get()

        result = confirm_delivery(order.pk, {line.id: ['C-1', 'C-2']}, user=self.user)

        line.refresh_from_db()
        self.assertEqual(line.delivered_quantity, 2)
        self.assertTrue(result.fully_delivered)

    def test_order_without_lines_is_never_delivered(self):
        order = TestDataFactory.create_order()
        result = confirm_delivery(order.pk, {}, user=self.user)
        self.assertFalse(result.fully_delivered)
        order.refresh_from_db()
        self.assertEqual(order.status, ORDER_REQUESTED)

    def test_delivery_is_audited(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Dock', 'quantity': 1}])
        line = order.lines.get()

        confirm_delivery(order.pk, {line.id: ['D-1']}, user=self.user)

        self.assertTrue(AuditLog.objects.filter(action='delivery_receive', object_reference=order.reference).exists())
        self.assertTrue(AuditLog.objects.filter(action='order_status_change', object_id=str(order.pk)).exists())


class DeliveryFailureTests(TestCase):
    """Database failures during confirm_delivery stay local to their line"""

    def setUp(self):
        self.user = TestDataFactory.create_user(role=ROLE_STOREKEEPER)

    def test_material_creation_failure_skips_only_its_line(self):
        material = TestDataFactory.create_material(name='Dock WD19', stock=0)
        order = TestDataFactory.create_order(lines=[
            {'material_name': 'Écran 27"', 'quantity': 1},
            {'material_name': 'Dock WD19', 'quantity': 1, 'material': material},
        ])
        new_line, known_line = order.lines.order_by('id')

        with mock.patch.object(Material.objects, 'create', side_effect=DatabaseError('disk full')):
            result = confirm_delivery(order.pk, {new_line.id: ['SA'], known_line.id: ['SB']}, user=self.user)

        self.assertEqual(result.created_serials, ['SB'])
        self.assertEqual(list(Serial.objects.values_list('serial_number', flat=True)), ['SB'])
        new_line.refresh_from_db()
        known_line.refresh_from_db()
        self.assertEqual(new_line.delivered_quantity, 0)
        self.assertIsNone(new_line.material_id)
        self.assertEqual(known_line.delivered_quantity, 1)
        self.assertFalse(Material.objects.filter(name='Écran 27"').exists())
        self.assertTrue(any('Écran 27"' in error for error in result.errors))
        self.assertFalse(result.fully_delivered)

    def test_serial_insert_failure_keeps_siblings(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Latitude 5440', 'quantity': 3}])
        line = order.lines.get()
        original_create = Serial.objects.create

        def create_serial(**kwargs):
            if kwargs['serial_number'] == 'SN-2':
                raise DatabaseError('value too long')
            return original_create(**kwargs)

        with mock.patch.object(Serial.objects, 'create', side_effect=create_serial):
            result = confirm_delivery(order.pk, {line.id: ['SN-1', 'SN-2', 'SN-3']}, user=self.user)

        self.assertEqual(result.created_serials, ['SN-1', 'SN-3'])
        self.assertEqual(len(result.errors), 1)
        self.assertIn('SN-2', result.errors[0])
        line.refresh_from_db()
        self.assertEqual(line.delivered_quantity, 2)
        self.assertEqual(line.material.stock, 2)

    def test_status_update_failure_keeps_serials(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Clavier', 'quantity': 1}])
        line = order.lines.get()

        with mock.patch.object(Order, 'save', side_effect=DatabaseError('lock timeout')):
            with self.assertRaises(DeliveryError) as ctx:
                confirm_delivery(order.pk, {line.id: ['K-1']}, user=self.user)

        self.assertEqual(ctx.exception.result.created_serials, ['K-1'])
        self.assertTrue(Serial.objects.filter(serial_number='K-1').exists())
        line.refresh_from_db()
        self.assertEqual(line.delivered_quantity, 1)
        order.refresh_from_db()
        self.assertEqual(order.status, ORDER_REQUESTED)

    def test_status_update_failure_is_500(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Clavier', 'quantity': 1}])
        line = order.lines.get()
        client = AuthenticatedAPIClient()
        client.authenticate_user(self.user)

        with mock.patch.object(Order, 'save', side_effect=DatabaseError('lock timeout')):
            response = client.post(
                f'/api/v1/orders/{order.id}/deliver/',
                {'serial_numbers': {str(line.id): ['K-1']}},
                format='json'
            )

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertIn('error', response.data)
        self.assertEqual(response.data['created_serials'], ['K-1'])
        self.assertTrue(Serial.objects.filter(serial_number='K-1').exists())

    def test_line_deleted_before_final_read(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Souris', 'quantity': 1}])
        line = order.lines.get()

        def delete_line(order, line_id, serial_numbers, line_result, today):
            OrderLine.objects.filter(pk=line_id).delete()

        with mock.patch('backend.purchasing.delivery._process_line', side_effect=delete_line):
            result = confirm_delivery(order.pk, {line.id: ['S-1']}, user=self.user)

        self.assertFalse(result.line_results[0].found)
        self.assertIsNone(result.line_results[0].delivered_quantity)
        self.assertFalse(result.fully_delivered)


class OrderAPITests(TestCase):
    """Test order endpoints"""

    def setUp(self):
        self.buyer = TestDataFactory.create_user(role=ROLE_BUYER)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.buyer)

    def test_create_order_with_lines(self):
        data = {
            'reference': 'CMD-001',
            'supplier': 'Dell France',
            'lines': [
                {'material_name': 'Latitude 5440', 'quantity': 2, 'unit_price': '1000.00'},
            ],
        }
        response = self.client.post('/api/v1/orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        order = Order.objects.get(reference='CMD-001')
        self.assertEqual(order.created_by, self.buyer)
        self.assertEqual(order.lines.count(), 1)
        # Amount defaults to the total including tax
        self.assertEqual(order.amount, Decimal('2400.00'))

    def test_create_order_rejects_zero_quantity(self):
        data = {
            'reference': 'CMD-002',
            'supplier': 'Dell France',
            'lines': [{'material_name': 'Latitude', 'quantity': 0, 'unit_price': '10.00'}],
        }
        response = self.client.post('/api/v1/orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_orders_filtered_by_status(self):
        TestDataFactory.create_order(reference='CMD-A', status=ORDER_DELIVERED)
        TestDataFactory.create_order(reference='CMD-B')
        response = self.client.get('/api/v1/orders/', {'status': ORDER_DELIVERED})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['reference'], 'CMD-A')

    def test_status_change_is_audited(self):
        order = TestDataFactory.create_order()
        response = self.client.patch(f'/api/v1/orders/{order.id}/', {'status': ORDER_SUPPLIER_ORDERED}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(AuditLog.objects.filter(action='order_status_change', object_id=str(order.id)).exists())

    def test_delivered_line_cannot_be_removed(self):
        order = TestDataFactory.create_order(lines=[
            {'material_name': 'Écran', 'quantity': 2, 'delivered_quantity': 1},
        ])
        response = self.client.patch(f'/api/v1/orders/{order.id}/', {'lines': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(order.lines.count(), 1)

    def test_deliver_endpoint(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Latitude', 'quantity': 1}])
        line = order.lines.get()
        response = self.client.post(
            f'/api/v1/orders/{order.id}/deliver/',
            {'serial_numbers': {str(line.id): ['LAT-001']}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['fully_delivered'])
        self.assertEqual(response.data['order']['status'], ORDER_DELIVERED)

    def test_deliver_partial_message(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Latitude', 'quantity': 2}])
        line = order.lines.get()
        response = self.client.post(
            f'/api/v1/orders/{order.id}/deliver/',
            {'serial_numbers': {str(line.id): ['LAT-001']}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['fully_delivered'])
        self.assertIn('partielle', response.data['message'])

    def test_deliver_missing_order(self):
        response = self.client.post('/api/v1/orders/99999/deliver/', {'serial_numbers': {}}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_delivery_progress(self):
        order = TestDataFactory.create_order(lines=[{'material_name': 'Latitude', 'quantity': 3, 'delivered_quantity': 1}])
        response = self.client.get(f'/api/v1/orders/{order.id}/delivery-progress/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lines'][0]['remaining'], 2)


class OrderRoleGatingTests(TestCase):
    """Writes are limited to the roles that own them"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_reader_can_list_but_not_create(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_READER))
        self.assertEqual(self.client.get('/api/v1/orders/').status_code, status.HTTP_200_OK)
        response = self.client.post('/api/v1/orders/', {'reference': 'CMD-X', 'supplier': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_storekeeper_cannot_create_order_but_can_deliver(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_STOREKEEPER))
        response = self.client.post('/api/v1/orders/', {'reference': 'CMD-X', 'supplier': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        order = TestDataFactory.create_order(lines=[{'material_name': 'Souris', 'quantity': 1}])
        line = order.lines.get()
        response = self.client.post(
            f'/api/v1/orders/{order.id}/deliver/',
            {'serial_numbers': {str(line.id): ['S-1']}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_reader_cannot_deliver(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_READER))
        order = TestDataFactory.create_order(lines=[{'material_name': 'Souris', 'quantity': 1}])
        line = order.lines.get()
        response = self.client.post(
            f'/api/v1/orders/{order.id}/deliver/',
            {'serial_numbers': {str(line.id): ['S-1']}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Serial.objects.exists())

    def test_admin_can_create_order(self):
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_ADMIN))
        response = self.client.post('/api/v1/orders/', {'reference': 'CMD-ADM', 'supplier': 'HP'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_unauthenticated_is_rejected(self):
        response = self.client.get('/api/v1/orders/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class QuoteExtractionClientTests(TestCase):
    """Retry and error mapping of the quote extraction client"""

    def make_client(self, responses, max_attempts=3):
        session = mock.Mock()
        session.post.side_effect = responses
        sleep = mock.Mock()
        client = QuoteExtractionClient(
            api_url='https://llm.test/v1/chat/completions',
            api_key='test-key',
            model='test-model',
            timeout=5,
            max_attempts=max_attempts,
            backoff_seconds=2,
            session=session,
            sleep=sleep,
        )
        return client, session, sleep

    def test_success_first_attempt(self):
        client, session, sleep = self.make_client([make_response(200, make_completion(QUOTE_PAYLOAD))])
        quote = client.extract(pdf_text='DEVIS DELL ...')
        self.assertEqual(quote.supplier, 'Dell France')
        self.assertEqual(quote.reference, 'DEV-2024-001')
        self.assertEqual(len(quote.lines), 2)
        self.assertEqual(quote.lines[1].unit_price, Decimal('180.50'))
        self.assertEqual(quote.total_amount, Decimal('2713.20'))
        self.assertEqual(session.post.call_count, 1)
        sleep.assert_not_called()

    def test_rate_limit_is_not_retried(self):
        client, session, sleep = self.make_client([make_response(429)])
        with self.assertRaises(QuoteRateLimitError) as ctx:
            client.extract(pdf_text='devis')
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(session.post.call_count, 1)
        sleep.assert_not_called()

    def test_credits_exhausted_is_not_retried(self):
        client, session, sleep = self.make_client([make_response(402)])
        with self.assertRaises(QuoteCreditsError) as ctx:
            client.extract(pdf_text='devis')
        self.assertEqual(ctx.exception.status_code, 402)
        self.assertEqual(session.post.call_count, 1)

    def test_two_failures_then_success_backs_off(self):
        client, session, sleep = self.make_client([
            make_response(500),
            requests.exceptions.ConnectionError('reset'),
            make_response(200, make_completion(QUOTE_PAYLOAD)),
        ])
        quote = client.extract(pdf_text='devis')
        self.assertEqual(quote.reference, 'DEV-2024-001')
        self.assertEqual(session.post.call_count, 3)
        delays = [c.args[0] for c in sleep.call_args_list]
        self.assertEqual(delays, [2, 4])
        self.assertGreaterEqual(sum(delays), 6)

    def test_exhausted_attempts_raise_unavailable(self):
        client, session, sleep = self.make_client([make_response(503), make_response(503), make_response(503)])
        with self.assertRaises(QuoteServiceUnavailableError) as ctx:
            client.extract(pdf_text='devis')
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(session.post.call_count, 3)
        self.assertEqual(sleep.call_count, 2)

    def test_unparsable_response_is_retried(self):
        bad = make_response(200, {'choices': [{'message': {'content': 'pas du JSON'}}]})
        client, session, sleep = self.make_client([bad, make_response(200, make_completion(QUOTE_PAYLOAD))])
        quote = client.extract(pdf_text='devis')
        self.assertEqual(len(quote.lines), 2)
        self.assertEqual(session.post.call_count, 2)

    def test_malformed_tool_call_is_retried_then_unavailable(self):
        body = {'choices': [{'message': {'tool_calls': ['extract_quote_data']}}]}
        client, session, sleep = self.make_client([make_response(200, body) for _ in range(3)])
        with self.assertRaises(QuoteServiceUnavailableError):
            client.extract(pdf_text='devis')
        self.assertEqual(session.post.call_count, 3)

    def test_non_text_content_is_retried_then_unavailable(self):
        body = {'choices': [{'message': {'content': {'lines': []}}}]}
        client, session, sleep = self.make_client([make_response(200, body) for _ in range(3)])
        with self.assertRaises(QuoteServiceUnavailableError):
            client.extract(pdf_text='devis')
        self.assertEqual(session.post.call_count, 3)

    def test_infinite_quantity_defaults_to_one(self):
        payload = dict(QUOTE_PAYLOAD, lines=[{'materialName': 'Latitude 5440', 'quantity': float('inf'), 'unitPrice': 950.0}])
        client, session, sleep = self.make_client([make_response(200, make_completion(payload))])
        quote = client.extract(pdf_text='devis')
        self.assertEqual(quote.lines[0].quantity, 1)

    def test_missing_input(self):
        client, session, sleep = self.make_client([])
        with self.assertRaises(ValueError):
            client.extract(pdf_text='   ')
        session.post.assert_not_called()

    def test_not_configured(self):
        client = QuoteExtractionClient(api_url='https://llm.test', api_key='', session=mock.Mock(), sleep=mock.Mock())
        with self.assertRaises(QuoteExtractionNotConfigured):
            client.extract(pdf_text='devis')

    def test_content_fallback(self):
        data = {'choices': [{'message': {'content': '```json\n' + json.dumps(QUOTE_PAYLOAD) + '\n```'}}]}
        quote = parse_completion(data)
        self.assertEqual(quote.supplier, 'Dell France')


class ExtractQuoteAPITests(TestCase):
    """Test the extract-quote endpoint"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_BUYER))

    @mock.patch('backend.purchasing.views.QuoteExtractionClient')
    def test_extract_quote(self, client_class):
        client_class.return_value.extract.return_value = parse_completion(make_completion(QUOTE_PAYLOAD))
        response = self.client.post('/api/v1/orders/extract-quote/', {'pdf_text': 'devis'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['supplier'], 'Dell France')
        self.assertEqual(len(response.data['lines']), 2)
        self.assertTrue(AuditLog.objects.filter(action='quote_extract').exists())

    @mock.patch('backend.purchasing.views.QuoteExtractionClient')
    def test_rate_limit_maps_to_429(self, client_class):
        client_class.return_value.extract.side_effect = QuoteRateLimitError()
        response = self.client.post('/api/v1/orders/extract-quote/', {'pdf_text': 'devis'}, format='json')
        self.assertEqual(response.status_code, 429)
        self.assertIn('error', response.data)

    @mock.patch('backend.purchasing.views.QuoteExtractionClient')
    def test_credits_map_to_402(self, client_class):
        client_class.return_value.extract.side_effect = QuoteCreditsError()
        response = self.client.post('/api/v1/orders/extract-quote/', {'pdf_text': 'devis'}, format='json')
        self.assertEqual(response.status_code, 402)

    def test_missing_input_is_400(self):
        response = self.client.post('/api/v1/orders/extract-quote/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class QuoteDocumentTests(TestCase):
    """Printable quote totals and validation"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(role=ROLE_BUYER))

    def test_totals(self):
        context = build_quote_context({
            'reference': 'DEV-1',
            'supplier': 'Dell',
            'lines': [
                {'material_name': 'Latitude', 'quantity': 2, 'unit_price': '1000'},
                {'material_name': 'Dock', 'quantity': 1, 'unit_price': '250.50'},
            ],
        })
        self.assertEqual(context['subtotal'], Decimal('2250.50'))
        self.assertEqual(context['tax'], Decimal('450.10'))
        self.assertEqual(context['total'], Decimal('2700.60'))
        self.assertEqual(context['total_display'], '2 700,60')

    def test_missing_fields(self):
        with self.assertRaises(QuoteDocumentError):
            build_quote_context({'reference': 'DEV-1', 'lines': []})

    def test_preview_endpoint(self):
        data = {
            'reference': 'DEV-42',
            'supplier': 'Lenovo',
            'lines': [{'material_name': 'ThinkPad', 'quantity': 1, 'unit_price': '100'}],
        }
        response = self.client.post('/api/v1/orders/quote-document/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/html; charset=utf-8')
        content = response.content.decode('utf-8')
        self.assertIn('DEV-42', content)
        self.assertIn('Total TTC', content)
        self.assertIn('120,00', content)

    def test_preview_missing_fields_is_400(self):
        response = self.client.post('/api/v1/orders/quote-document/', {'reference': 'DEV-42'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)

    def test_order_quote_document(self):
        order = TestDataFactory.create_order(reference='CMD-77', lines=[
            {'material_name': 'Écran', 'quantity': 2, 'unit_price': Decimal('150.00')},
        ])
        response = self.client.get(f'/api/v1/orders/{order.id}/quote-document/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('CMD-77', response.content.decode('utf-8'))
