"""
Delivery reconciliation.

Turns the serial numbers entered for each line of an order into Serial rows,
advances each line's delivered quantity and moves the order to "Livré" once
every line is covered.

Each line is processed in its own transaction: the material creation, the
serial inserts and the counter update of a line commit or roll back
together, while a failure on one line never touches the others. Inside a
line every serial insert has its own savepoint, so one rejected serial
number does not discard its siblings.

Counters only grow by the number of serials actually inserted, through a
database-side increment, so concurrent confirmations on the same line cannot
lose an update.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from backend.catalog.models import Material, Serial, CATEGORY_OTHER, SERIAL_IN_STOCK
from backend.core.utils import create_audit_log, summarize_serial_numbers
from .models import Order, OrderLine, ORDER_DELIVERED

logger = logging.getLogger(__name__)

STATE_COMPLETE = 'Complet'
STATE_PARTIAL = 'Partiel'
STATE_PENDING = 'En attente'


class DeliveryError(Exception):
    """The order status could not be updated after the lines were processed"""

    def __init__(self, message, result=None):
        super().__init__(message)
        self.message = message
        self.result = result


class LineSkipped(Exception):
    """Aborts the current line; its transaction is rolled back"""


@dataclass
class LineResult:
    line_id: int
    material_name: str = ''
    submitted: int = 0
    created_serials: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    material_id: Optional[int] = None
    material_created: bool = False
    delivered_quantity: Optional[int] = None
    quantity: Optional[int] = None
    found: bool = True

    def as_dict(self):
        return {
            'line_id': self.line_id,
            'material_name': self.material_name,
            'material_id': self.material_id,
            'material_created': self.material_created,
            'submitted': self.submitted,
            'created': len(self.created_serials),
            'created_serials': self.created_serials,
            'delivered_quantity': self.delivered_quantity,
            'quantity': self.quantity,
            'found': self.found,
            'errors': self.errors,
        }


@dataclass
class DeliveryResult:
    order_id: int
    fully_delivered: bool = False
    status_changed: bool = False
    nothing_submitted: bool = False
    created_serials: List[str] = field(default_factory=list)
    line_results: List[LineResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def as_dict(self):
        return {
            'order_id': self.order_id,
            'fully_delivered': self.fully_delivered,
            'status_changed': self.status_changed,
            'created_count': len(self.created_serials),
            'created_serials': self.created_serials,
            'line_results': [line.as_dict() for line in self.line_results],
            'errors': self.errors,
        }


def clean_serial_numbers(values):
    """Trim entries and drop blanks, keeping the submitted order"""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned = []
    for value in values:
        if value is None:
            continue
        value = str(value).strip()
        if value:
            cleaned.append(value)
    return cleaned


def _normalize_submission(serial_numbers_by_line):
    """Map line ids to cleaned serial lists; keys that are not ids are returned apart"""
    normalized: Dict[int, List[str]] = {}
    invalid_keys = []
    for raw_key, values in (serial_numbers_by_line or {}).items():
        serials = clean_serial_numbers(values)
        if not serials:
            continue
        try:
            line_id = int(raw_key)
        except (TypeError, ValueError):
            invalid_keys.append(str(raw_key))
            continue
        normalized.setdefault(line_id, []).extend(serials)
    return normalized, invalid_keys


def _resolve_material(line, line_result):
    """
    Material of the line, looked up by the line's material id.
    When the line has none yet a catalog entry is created from the line and
    linked to it.
    """
    if line.material_id:
        material = Material.objects.filter(pk=line.material_id).first()
        if material is not None:
            return material

    try:
        with transaction.atomic():
            material = Material.objects.create(
                name=line.material_name,
                category=CATEGORY_OTHER,
                stock=0,
                unit_price=line.unit_price,
            )
            OrderLine.objects.filter(pk=line.pk).update(material=material)
    except DatabaseError as e:
        logger.error(f"Delivery: material creation failed for line {line.pk} ({line.material_name}): {str(e)}")
        raise LineSkipped(f"Création du matériel « {line.material_name} » impossible : {str(e)}")

    line.material_id = material.pk
    line_result.material_created = True
    logger.info(f"Delivery: created material {material.pk} for line {line.pk} ({line.material_name})")
    return material


def _insert_serial(line, material, serial_number, today):
    """Insert one serial in its own savepoint. Returns an error message or None."""
    if Serial.objects.filter(serial_number=serial_number).exists():
        return f"Numéro de série « {serial_number} » existe déjà"
    try:
        with transaction.atomic():
            Serial.objects.create(
                serial_number=serial_number,
                material=material,
                order_line=line,
                status=SERIAL_IN_STOCK,
                purchase_date=today,
            )
    except IntegrityError:
        return f"Numéro de série « {serial_number} » existe déjà"
    except DatabaseError as e:
        logger.error(f"Delivery: serial insert failed for {serial_number}: {str(e)}")
        return f"Erreur lors de l'ajout du numéro de série « {serial_number} » : {str(e)}"
    return None


def _process_line(order, line_id, serial_numbers, line_result, today):
    with transaction.atomic():
        # Lock the line so concurrent confirmations resolve its material once
        line = OrderLine.objects.select_for_update().get(pk=line_id, order_id=order.pk)
        line_result.material_name = line.material_name

        material = _resolve_material(line, line_result)
        line_result.material_id = material.pk

        for serial_number in serial_numbers:
            error = _insert_serial(line, material, serial_number, today)
            if error:
                logger.warning(f"Delivery: order {order.pk} line {line.pk}: {error}")
                line_result.errors.append(error)
            else:
                line_result.created_serials.append(serial_number)

        created = len(line_result.created_serials)
        if created:
            OrderLine.objects.filter(pk=line.pk).update(delivered_quantity=F('delivered_quantity') + created)
            Material.objects.filter(pk=material.pk).update(stock=F('stock') + created)


def is_order_fully_delivered(order_id):
    """Fresh read of every line: at least one line, and each delivered >= ordered"""
    rows = list(OrderLine.objects.filter(order_id=order_id).values_list('quantity', 'delivered_quantity'))
    return bool(rows) and all(delivered >= quantity for quantity, delivered in rows)


def confirm_delivery(order_id, serial_numbers_by_line, user=None, request=None):
    """
    Record the serial numbers delivered for the lines of an order.

    Args:
        order_id: primary key of the order
        serial_numbers_by_line: mapping of OrderLine id to a list of serial numbers
        user: user attributed in the audit log
        request: optional request, for the audit log IP address

    Returns a DeliveryResult. Per-line problems are reported in the result;
    only a failure of the final status update raises DeliveryError.
    """
    order = Order.objects.get(pk=order_id)
    result = DeliveryResult(order_id=order.pk)

    submission, invalid_keys = _normalize_submission(serial_numbers_by_line)
    for key in invalid_keys:
        result.errors.append(f"Ligne « {key} » introuvable")

    if not submission:
        # Nothing to record: no material, serial, counter or status change
        result.nothing_submitted = True
        return result

    line_ids = set(order.lines.values_list('id', flat=True))
    today = timezone.localdate()

    for line_id, serial_numbers in submission.items():
        line_result = LineResult(line_id=line_id, submitted=len(serial_numbers))
        result.line_results.append(line_result)

        if line_id not in line_ids:
            line_result.found = False
            message = f"Ligne {line_id} introuvable pour la commande {order.reference}"
            logger.warning(f"Delivery: {message}")
            line_result.errors.append(message)
            result.errors.append(message)
            continue

        try:
            _process_line(order, line_id, serial_numbers, line_result, today)
        except LineSkipped as e:
            line_result.created_serials = []
            line_result.errors.append(str(e))
        except DatabaseError as e:
            logger.error(f"Delivery: order {order.pk} line {line_id} rolled back: {str(e)}")
            line_result.created_serials = []
            line_result.material_created = False
            line_result.errors.append(f"Erreur lors de la réception de la ligne : {str(e)}")

        for error in line_result.errors:
            label = line_result.material_name or f"Ligne {line_id}"
            result.errors.append(f"{label} : {error}")
        result.created_serials.extend(line_result.created_serials)

        if line_result.created_serials:
            create_audit_log(
                request=request,
                user=user,
                action='delivery_receive',
                model_name='OrderLine',
                object_id=line_id,
                object_name=line_result.material_name,
                object_reference=order.reference,
                serial_number=summarize_serial_numbers(line_result.created_serials),
                changes={
                    'received': len(line_result.created_serials),
                    'material_created': line_result.material_created,
                },
            )

    for line_result in result.line_results:
        if not line_result.found:
            continue
        row = OrderLine.objects.filter(pk=line_result.line_id).values_list(
            'quantity', 'delivered_quantity'
        ).first()
        if row is None:
            # Line deleted since it was processed
            line_result.found = False
            continue
        line_result.quantity, line_result.delivered_quantity = row

    result.fully_delivered = is_order_fully_delivered(order.pk)
    if result.fully_delivered and order.status != ORDER_DELIVERED:
        previous_status = order.status
        try:
            with transaction.atomic():
                order.status = ORDER_DELIVERED
                order.save(update_fields=['status', 'updated_at'])
        except DatabaseError as e:
            logger.error(f"Delivery: status update failed for order {order.pk}: {str(e)}")
            raise DeliveryError(
                "Les numéros de série ont été enregistrés mais le statut de la commande "
                "n'a pas pu être mis à jour.",
                result=result,
            ) from e
        result.status_changed = True
        create_audit_log(
            request=request,
            user=user,
            action='order_status_change',
            model_name='Order',
            object_id=order.pk,
            object_name=order.reference,
            object_reference=order.reference,
            changes={'status': {'old': previous_status, 'new': ORDER_DELIVERED}},
        )

    logger.info(
        f"Delivery for order {order.pk}: {len(result.created_serials)} serial(s) created, "
        f"{len(result.errors)} error(s), fully delivered={result.fully_delivered}"
    )
    return result


def get_delivery_progress(order):
    """Ordered vs. delivered quantity for each line of an order"""
    lines = []
    for line in order.lines.all().order_by('id'):
        if line.delivered_quantity >= line.quantity:
            state = STATE_COMPLETE
        elif line.delivered_quantity > 0:
            state = STATE_PARTIAL
        else:
            state = STATE_PENDING
        lines.append({
            'line_id': line.id,
            'material_name': line.material_name,
            'material_id': line.material_id,
            'quantity': line.quantity,
            'delivered_quantity': line.delivered_quantity,
            'remaining': max(line.quantity - line.delivered_quantity, 0),
            'state': state,
        })
    return {
        'order_id': order.id,
        'reference': order.reference,
        'status': order.status,
        'fully_delivered': bool(lines) and all(l['state'] == STATE_COMPLETE for l in lines),
        'lines': lines,
    }
