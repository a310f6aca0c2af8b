"""
Assign and unassign serialized units.

The serial status, the assignment row and the material stock always move
together in one transaction.
"""
import logging

from django.db import transaction
from django.utils import timezone

from backend.catalog.models import Serial, SERIAL_IN_STOCK, SERIAL_ASSIGNED
from backend.catalog.services import SerialError, increment_stock, decrement_stock
from .models import Assignment

logger = logging.getLogger(__name__)


class AssignmentError(SerialError):
    pass


def assign_serial(serial_id, assigned_to, department='', start_date=None, renewal_date=None, notes=''):
    """Hand an in-stock serial to someone: status Attribué, stock -1"""
    with transaction.atomic():
        try:
            serial = Serial.objects.select_for_update().select_related('material').get(pk=serial_id)
        except Serial.DoesNotExist:
            raise AssignmentError("Numéro de série introuvable", status_code=404)

        if serial.status != SERIAL_IN_STOCK:
            raise AssignmentError(
                f"Le matériel doit être en stock pour être attribué (statut actuel : « {serial.status} »)."
            )

        assignment = Assignment.objects.create(
            serial=serial,
            serial_number=serial.serial_number,
            assigned_to=assigned_to,
            department=department or '',
            start_date=start_date or timezone.now(),
            renewal_date=renewal_date,
            notes=notes or '',
        )
        serial.status = SERIAL_ASSIGNED
        serial.save(update_fields=['status', 'updated_at'])
        decrement_stock(serial.material_id)

    logger.info(f"Serial {serial.serial_number} assigned to {assigned_to}")
    return assignment


def unassign(assignment_id, notes=None):
    """Close an active assignment and put its serial back in stock"""
    with transaction.atomic():
        try:
            assignment = Assignment.objects.select_for_update().get(pk=assignment_id)
        except Assignment.DoesNotExist:
            raise AssignmentError("Attribution introuvable", status_code=404)

        if not assignment.is_active:
            raise AssignmentError("Cette attribution est déjà terminée.")

        assignment.end_date = timezone.now()
        if notes:
            assignment.notes = notes
        assignment.save(update_fields=['end_date', 'notes', 'updated_at'])

        serial = Serial.objects.select_for_update().get(pk=assignment.serial_id)
        if serial.status == SERIAL_ASSIGNED:
            serial.status = SERIAL_IN_STOCK
            serial.save(update_fields=['status', 'updated_at'])
            increment_stock(serial.material_id)
        else:
            # Serial moved on (repair, retired...) while assigned: leave it there
            logger.warning(f"Unassign {assignment.pk}: serial {serial.serial_number} is {serial.status}, status kept")

    logger.info(f"Assignment {assignment.pk} ended for serial {assignment.serial_number}")
    return assignment
