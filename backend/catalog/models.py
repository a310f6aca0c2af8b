from django.db import models
from decimal import Decimal

CATEGORY_LAPTOP = 'PC Portable'
CATEGORY_DESKTOP = 'Fixe'
CATEGORY_SCREEN = 'Écran'
CATEGORY_KEYBOARD = 'Clavier'
CATEGORY_MOUSE = 'Souris'
CATEGORY_HEADSET = 'Casque'
CATEGORY_WEBCAM = 'Webcam'
CATEGORY_OTHER = 'Autre'

CATEGORY_CHOICES = [
    (CATEGORY_LAPTOP, 'PC Portable'),
    (CATEGORY_DESKTOP, 'Fixe'),
    (CATEGORY_SCREEN, 'Écran'),
    (CATEGORY_KEYBOARD, 'Clavier'),
    (CATEGORY_MOUSE, 'Souris'),
    (CATEGORY_HEADSET, 'Casque'),
    (CATEGORY_WEBCAM, 'Webcam'),
    (CATEGORY_OTHER, 'Autre'),
]
VALID_CATEGORIES = [value for value, _ in CATEGORY_CHOICES]

SERIAL_IN_STOCK = 'En stock'
SERIAL_ASSIGNED = 'Attribué'
SERIAL_IN_REPAIR = 'En réparation'
SERIAL_RETIRED = 'Retiré'
SERIAL_REMOTE = 'Télétravail'

SERIAL_STATUS_CHOICES = [
    (SERIAL_IN_STOCK, 'En stock'),
    (SERIAL_ASSIGNED, 'Attribué'),
    (SERIAL_IN_REPAIR, 'En réparation'),
    (SERIAL_RETIRED, 'Retiré'),
    (SERIAL_REMOTE, 'Télétravail'),
]

# A serial can only be discarded from one of these states
DISCARDABLE_STATUSES = (SERIAL_IN_STOCK, SERIAL_ASSIGNED, SERIAL_IN_REPAIR)


class Material(models.Model):
    """Catalog entry for a kind of equipment"""
    name = models.CharField(max_length=255, db_index=True)
    category = models.CharField(max_length=50, choices=CATEGORY_CHOICES, default=CATEGORY_OTHER)
    description = models.TextField(blank=True)
    manufacturer = models.CharField(max_length=200, blank=True)
    model = models.CharField(max_length=200, blank=True)
    # Count of serialized units currently in stock
    stock = models.PositiveIntegerField(default=0)
    min_stock = models.PositiveIntegerField(default=0)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    image_url = models.URLField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    @property
    def is_low_stock(self):
        return self.min_stock > 0 and self.stock <= self.min_stock

    class Meta:
        db_table = 'materials'
        ordering = ['name']


class Serial(models.Model):
    """One physical, uniquely numbered unit of a material"""
    serial_number = models.CharField(max_length=255, unique=True, db_index=True)
    material = models.ForeignKey(Material, on_delete=models.CASCADE, related_name='serials')
    # Delivery that produced this unit, if it came from an order
    order_line = models.ForeignKey('purchasing.OrderLine', on_delete=models.SET_NULL, null=True, blank=True, related_name='serials')
    status = models.CharField(max_length=20, choices=SERIAL_STATUS_CHOICES, default=SERIAL_IN_STOCK, db_index=True)
    purchase_date = models.DateField(null=True, blank=True)
    warranty_end = models.DateField(null=True, blank=True)
    renewal_date = models.DateField(null=True, blank=True)
    location = models.CharField(max_length=200, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.serial_number

    class Meta:
        db_table = 'serials'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['material', 'status'], name='idx_serial_material_status'),
            models.Index(fields=['warranty_end'], name='idx_serial_warranty_end'),
        ]
