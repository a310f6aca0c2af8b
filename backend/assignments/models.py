from django.db import models
from django.utils import timezone


class Assignment(models.Model):
    """Hand-over of one serialized unit to a person"""
    serial = models.ForeignKey('catalog.Serial', on_delete=models.CASCADE, related_name='assignments')
    # Kept so the history stays readable if the serial is renumbered
    serial_number = models.CharField(max_length=255, db_index=True)
    assigned_to = models.CharField(max_length=200)
    department = models.CharField(max_length=100, blank=True)
    start_date = models.DateTimeField(default=timezone.now)
    # Null while the assignment is active
    end_date = models.DateTimeField(null=True, blank=True)
    renewal_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.serial_number} -> {self.assigned_to}"

    @property
    def is_active(self):
        return self.end_date is None

    class Meta:
        db_table = 'assignments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['serial', 'end_date'], name='idx_assignment_serial_active'),
        ]
