"""Printable HTML quote (devis) for an order or an ad-hoc set of lines"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.template.loader import render_to_string
from django.utils import timezone

from backend.catalog.services import parse_flexible_date

logger = logging.getLogger(__name__)

QUOTE_TAX_RATE = Decimal('0.20')
CENT = Decimal('0.01')


class QuoteDocumentError(Exception):
    pass


def _money(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _format_amount(value):
    """1234.5 -> '1 234,50' (French grouping and decimal comma)"""
    formatted = f"{_money(value):,.2f}"
    return formatted.replace(',', ' ').replace('.', ',')


def _format_date(value):
    return value.strftime('%d/%m/%Y') if value else ''


def build_quote_context(data):
    """
    Validate quote data and compute its totals.

    `data` holds reference, supplier, lines [{material_name, quantity,
    unit_price}], and optionally description and date.
    """
    reference = str(data.get('reference') or '').strip()
    supplier = str(data.get('supplier') or '').strip()
    raw_lines = data.get('lines')
    if not reference or not supplier or not raw_lines:
        raise QuoteDocumentError("Champs requis manquants : référence, fournisseur et lignes.")

    lines = []
    for raw in raw_lines:
        name = str(raw.get('material_name') or raw.get('materialName') or '').strip()
        try:
            quantity = int(raw.get('quantity') or 0)
            unit_price = Decimal(str(raw.get('unit_price', raw.get('unitPrice', 0)) or 0))
        except (InvalidOperation, TypeError, ValueError):
            raise QuoteDocumentError(f"Ligne invalide : {name or raw}")
        line_total = _money(quantity * unit_price)
        lines.append({
            'material_name': name,
            'quantity': quantity,
            'unit_price': _format_amount(unit_price),
            'total': _format_amount(line_total),
            'raw_total': line_total,
        })

    subtotal = _money(sum((line['raw_total'] for line in lines), Decimal('0')))
    tax = _money(subtotal * QUOTE_TAX_RATE)
    total = subtotal + tax

    try:
        quote_date = parse_flexible_date(data.get('date')) or timezone.localdate()
    except ValueError:
        quote_date = timezone.localdate()

    return {
        'reference': reference,
        'supplier': supplier,
        'description': str(data.get('description') or '').strip(),
        'date': _format_date(quote_date),
        'generated_on': _format_date(timezone.localdate()),
        'lines': lines,
        'tax_percent': int(QUOTE_TAX_RATE * 100),
        'subtotal': subtotal,
        'tax': tax,
        'total': total,
        'subtotal_display': _format_amount(subtotal),
        'tax_display': _format_amount(tax),
        'total_display': _format_amount(total),
    }


def quote_data_from_order(order):
    return {
        'reference': order.reference,
        'supplier': order.supplier,
        'description': order.description,
        'date': timezone.localtime(order.created_at).date() if order.created_at else None,
        'lines': [
            {'material_name': line.material_name, 'quantity': line.quantity, 'unit_price': line.unit_price}
            for line in order.lines.all()
        ],
    }


def render_quote_html(data):
    context = build_quote_context(data)
    logger.info(f"Rendering quote document {context['reference']}")
    return render_to_string('purchasing/quote.html', context)
