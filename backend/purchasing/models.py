from django.db import models
from decimal import Decimal
from backend.core.models import User

ORDER_REQUESTED = 'Demandé'
ORDER_INTERNAL_CIRCUIT = 'Circuit interne'
ORDER_SUPPLIER_ORDERED = 'Commande fournisseur faite'
ORDER_DELIVERED = 'Livré'

DEFAULT_TAX_RATE = Decimal('20.00')


class Order(models.Model):
    """Purchase order for IT equipment"""
    # Lifecycle order matters: each status follows the previous one
    STATUS_CHOICES = [
        (ORDER_REQUESTED, 'Demandé'),
        (ORDER_INTERNAL_CIRCUIT, 'Circuit interne'),
        (ORDER_SUPPLIER_ORDERED, 'Commande fournisseur faite'),
        (ORDER_DELIVERED, 'Livré'),
    ]

    reference = models.CharField(max_length=100, db_index=True)
    supplier = models.CharField(max_length=200)
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    currency = models.CharField(max_length=3, default='EUR')
    description = models.TextField(blank=True)
    requested_by = models.CharField(max_length=200, blank=True)
    site = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=50, choices=STATUS_CHOICES, default=ORDER_REQUESTED)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='orders')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.reference

    def get_subtotal(self):
        """Sum of the lines before tax"""
        return sum((line.get_line_total() for line in self.lines.all()), Decimal('0.00'))

    def get_total(self):
        """Sum of the lines including tax"""
        return sum((line.get_line_total_with_tax() for line in self.lines.all()), Decimal('0.00'))

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='idx_order_status'),
            models.Index(fields=['-created_at'], name='idx_order_created'),
        ]


class OrderLine(models.Model):
    """One item row of an order, tracking ordered vs. delivered quantity"""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='lines')
    # Filled in lazily when the first delivery creates the catalog entry
    material = models.ForeignKey('catalog.Material', on_delete=models.SET_NULL, null=True, blank=True, related_name='order_lines')
    material_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=DEFAULT_TAX_RATE)
    # Never clamped to quantity: over-delivery is recorded as is
    delivered_quantity = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.material_name} x{self.quantity}"

    def get_line_total(self):
        return self.quantity * self.unit_price

    def get_line_total_with_tax(self):
        return self.get_line_total() * (1 + self.tax_rate / Decimal('100'))

    @property
    def is_fully_delivered(self):
        return self.delivered_quantity >= self.quantity

    class Meta:
        db_table = 'order_lines'
        ordering = ['id']
