"""
Serial inventory operations: manual add, CSV import and discard.

Every operation keeps Material.stock in step with the number of serials
sitting "En stock", using database-side increments.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date

from backend.core.cache_signals import suspend_cache_signals
from .models import (
    Material, Serial, VALID_CATEGORIES, CATEGORY_OTHER,
    SERIAL_IN_STOCK, SERIAL_RETIRED, DISCARDABLE_STATUSES,
)

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    'materialName', 'category', 'serialNumber', 'purchaseDate',
    'warrantyEnd', 'renewalDate', 'location', 'notes',
]

CSV_TEMPLATE_ROWS = [
    ['MacBook Pro 14', 'PC Portable', 'SN123456789', '2025-01-15', '2028-01-15', '2027-12-01', 'Bureau Paris', 'Modèle M3 Pro'],
    ['Dell P2422H', 'Écran', 'CN0ABC123', '2025-02-01', '2028-02-01', '', 'Stock', ''],
]

CSV_TEMPLATE_FILENAME = 'modele_import_materiels.csv'

# Accepted date formats besides ISO
DATE_FORMATS = ('%d/%m/%Y', '%d-%m-%Y')


class SerialError(Exception):
    """A serial operation was rejected; `status_code` is the HTTP status to answer with"""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class ImportResult:
    success: int = 0
    errors: list = field(default_factory=list)


def parse_flexible_date(value):
    """
    Parse YYYY-MM-DD (or DD/MM/YYYY) into a date.
    Returns None for an empty value and raises ValueError for garbage.
    """
    if value is None:
        return None
    if hasattr(value, 'year'):
        return value
    value = str(value).strip()
    if not value:
        return None
    # Accept a full ISO timestamp as well
    parsed = parse_date(value[:10])
    if parsed:
        return parsed
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value}")


def increment_stock(material_id, amount=1):
    if amount:
        Material.objects.filter(id=material_id).update(stock=F('stock') + amount)


def decrement_stock(material_id, amount=1):
    """Decrease stock without ever going below zero"""
    if amount:
        Material.objects.filter(id=material_id, stock__gte=amount).update(stock=F('stock') - amount)


def add_manual_serial(material, serial_number, purchase_date=None, warranty_end=None,
                      renewal_date=None, location='', notes=''):
    """Register one serial for an existing material and bump its stock"""
    serial_number = (serial_number or '').strip()
    if not serial_number:
        raise SerialError("Le numéro de série est requis.")
    if Serial.objects.filter(serial_number=serial_number).exists():
        raise SerialError("Ce numéro de série existe déjà", status_code=409)

    if purchase_date and warranty_end and warranty_end < purchase_date:
        raise SerialError("La fin de garantie doit être postérieure à la date d'achat.")

    try:
        with transaction.atomic():
            serial = Serial.objects.create(
                material=material,
                serial_number=serial_number,
                status=SERIAL_IN_STOCK,
                purchase_date=purchase_date,
                warranty_end=warranty_end,
                renewal_date=renewal_date,
                location=location or '',
                notes=notes or '',
            )
            increment_stock(material.id)
    except IntegrityError:
        # Lost a race with a concurrent insert of the same number
        raise SerialError("Ce numéro de série existe déjà", status_code=409)

    logger.info(f"Serial {serial_number} added to material {material.id}")
    return serial


def _read_csv_rows(content):
    """Yield (line_number, row dict) for rows with a material name and a serial number"""
    reader = csv.DictReader(io.StringIO(content))
    if not reader.fieldnames or 'serialNumber' not in [h.strip() for h in reader.fieldnames]:
        # Headerless file: map positional columns
        reader = csv.DictReader(io.StringIO(content), fieldnames=CSV_COLUMNS)
    for row in reader:
        clean = {(k or '').strip(): (v or '').strip() for k, v in row.items() if isinstance(v, str) or v is None}
        if not clean.get('materialName') or not clean.get('serialNumber'):
            continue
        yield reader.line_num, clean


def _import_row(row_num, row, materials_by_name):
    """Import one CSV row, returning an error string or None on success"""
    serial_number = row['serialNumber']
    if Serial.objects.filter(serial_number=serial_number).exists():
        return f'Ligne {row_num}: Numéro de série "{serial_number}" existe déjà'

    try:
        purchase_date = parse_flexible_date(row.get('purchaseDate'))
    except ValueError:
        return f"Ligne {row_num}: Date d'achat invalide"
    try:
        warranty_end = parse_flexible_date(row.get('warrantyEnd'))
    except ValueError:
        return f"Ligne {row_num}: Date de garantie invalide"
    try:
        renewal_date = parse_flexible_date(row.get('renewalDate'))
    except ValueError:
        return f"Ligne {row_num}: Date de renouvellement invalide"

    name = row['materialName']
    material = materials_by_name.get(name)
    if material is None:
        material = Material.objects.filter(name=name).first()
    if material is None:
        category = row.get('category') or CATEGORY_OTHER
        if category not in VALID_CATEGORIES:
            category = CATEGORY_OTHER
        try:
            with transaction.atomic():
                material = Material.objects.create(name=name, category=category, stock=0, min_stock=0)
        except Exception as e:
            logger.error(f"CSV import: material creation failed for {name}: {str(e)}")
            return f"Ligne {row_num}: Erreur création matériel - {str(e)}"
    materials_by_name[name] = material

    try:
        with transaction.atomic():
            Serial.objects.create(
                material=material,
                serial_number=serial_number,
                status=SERIAL_IN_STOCK,
                purchase_date=purchase_date,
                warranty_end=warranty_end,
                renewal_date=renewal_date,
                location=row.get('location', ''),
                notes=row.get('notes', ''),
            )
            increment_stock(material.id)
    except Exception as e:
        logger.error(f"CSV import: serial creation failed for {serial_number}: {str(e)}")
        return f"Ligne {row_num}: Erreur création série - {str(e)}"
    return None


def import_serials_csv(content):
    """
    Import serials from CSV text.

    Rows are processed independently: a bad row is reported as
    "Ligne N: ..." and the rest of the file still goes through.
    """
    result = ImportResult()
    materials_by_name = {}
    with suspend_cache_signals():
        for row_num, row in _read_csv_rows(content):
            try:
                with transaction.atomic():
                    error = _import_row(row_num, row, materials_by_name)
            except Exception as e:
                logger.error(f"CSV import: unexpected error on line {row_num}: {str(e)}")
                error = f"Ligne {row_num}: Erreur inattendue"
                materials_by_name.pop(row['materialName'], None)
            if error:
                result.errors.append(error)
            else:
                result.success += 1
    logger.info(f"CSV import finished: {result.success} imported, {len(result.errors)} errors")
    return result


def build_csv_template():
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
    writer.writerow(CSV_COLUMNS)
    writer.writerows(CSV_TEMPLATE_ROWS)
    return buffer.getvalue()


def discard_serial(serial, notes=None):
    """
    Retire a serial. Closes its active assignment, and gives back the stock
    unit when the serial was sitting in stock.
    """
    from backend.assignments.models import Assignment

    if serial.status not in DISCARDABLE_STATUSES:
        raise SerialError(f"Impossible de mettre au rebut un matériel au statut « {serial.status} ».")

    previous_status = serial.status
    with transaction.atomic():
        Assignment.objects.filter(serial=serial, end_date__isnull=True).update(end_date=timezone.now())
        serial.status = SERIAL_RETIRED
        if notes:
            serial.notes = notes
        serial.save(update_fields=['status', 'notes', 'updated_at'])
        if previous_status == SERIAL_IN_STOCK:
            decrement_stock(serial.material_id)

    logger.info(f"Serial {serial.serial_number} discarded (was {previous_status})")
    return previous_status


def apply_status_change(material_id, old_status, new_status):
    """Adjust stock when a serial enters or leaves the "En stock" state"""
    if old_status == new_status:
        return
    if new_status == SERIAL_IN_STOCK:
        increment_stock(material_id)
    elif old_status == SERIAL_IN_STOCK:
        decrement_stock(material_id)
