"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.core.permissions import set_user_role, ROLE_READER
from backend.catalog.models import Material, Serial, CATEGORY_OTHER, SERIAL_IN_STOCK
from backend.parties.models import Supplier
from backend.purchasing.models import Order, OrderLine
from backend.assignments.models import Assignment
from decimal import Decimal
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', role=ROLE_READER, is_superuser=False):
        """Create a test user holding `role` (ignored for superusers)"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_superuser=is_superuser,
            is_staff=is_superuser,
        )
        if not is_superuser and role:
            set_user_role(user, role)
        return user

    @staticmethod
    def create_material(name=None, category=CATEGORY_OTHER, stock=0, min_stock=0, unit_price=None):
        """Create a test material"""
        if not name:
            name = f'Material_{TestDataFactory.random_string(6)}'
        return Material.objects.create(
            name=name,
            category=category,
            stock=stock,
            min_stock=min_stock,
            unit_price=unit_price if unit_price is not None else Decimal('100.00'),
        )

    @staticmethod
    def create_serial(material=None, serial_number=None, status=SERIAL_IN_STOCK, **kwargs):
        """Create a test serial. Stock is not touched: pass `stock` to create_material when it matters."""
        if not material:
            material = TestDataFactory.create_material()
        if not serial_number:
            serial_number = f'SN_{TestDataFactory.random_string(10)}'
        return Serial.objects.create(
            serial_number=serial_number,
            material=material,
            status=status,
            **kwargs
        )

    @staticmethod
    def create_supplier(name=None, email=None):
        """Create a test supplier"""
        if not name:
            name = f'Supplier_{TestDataFactory.random_string(6)}'
        return Supplier.objects.create(
            name=name,
            email=email or f'{name.lower()}@test.com',
        )

    @staticmethod
    def create_order(user=None, reference=None, supplier='Fournisseur Test', lines=None, **kwargs):
        """
        Create a test order.

        `lines` is a list of dicts with material_name, quantity and optionally
        unit_price, material and delivered_quantity.
        """
        if not reference:
            reference = f'CMD-{TestDataFactory.random_string(6).upper()}'
        order = Order.objects.create(
            reference=reference,
            supplier=supplier,
            created_by=user,
            **kwargs
        )
        for line in lines or []:
            OrderLine.objects.create(
                order=order,
                material=line.get('material'),
                material_name=line['material_name'],
                quantity=line['quantity'],
                unit_price=line.get('unit_price', Decimal('100.00')),
                delivered_quantity=line.get('delivered_quantity', 0),
            )
        return order

    @staticmethod
    def create_assignment(serial, assigned_to='Jean Dupont', department='IT', end_date=None):
        """Create a test assignment row (the serial status is left as is)"""
        return Assignment.objects.create(
            serial=serial,
            serial_number=serial.serial_number,
            assigned_to=assigned_to,
            department=department,
            end_date=end_date,
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
