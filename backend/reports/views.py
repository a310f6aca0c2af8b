"""
Dashboard statistics.

The aggregates are cached (Redis in production) and the cache entry is
dropped by the post_save/post_delete signals of the models they read.
"""
import logging
from datetime import timedelta

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from django.db.models import Count, Sum, F
from django.utils import timezone

from backend.assignments.models import Assignment
from backend.catalog.models import Material, Serial, SERIAL_IN_STOCK, VALID_CATEGORIES
from backend.core.cache_utils import get_cached_dashboard, cache_dashboard
from backend.purchasing.models import Order, ORDER_DELIVERED

logger = logging.getLogger(__name__)

WARRANTY_WARNING_DAYS = 90


def compute_dashboard_stats(today=None):
    """Stock, order and assignment figures shown on the dashboard"""
    today = today or timezone.localdate()
    warning_date = today + timedelta(days=WARRANTY_WARNING_DAYS)

    total_stock = Material.objects.aggregate(total=Sum('stock'))['total'] or 0
    serials_in_stock = Serial.objects.filter(status=SERIAL_IN_STOCK).count()
    pending_orders = Order.objects.exclude(status=ORDER_DELIVERED).count()
    active_assignments = Assignment.objects.filter(end_date__isnull=True).count()
    # Warranty still running but ending within the warning window
    warranty_warnings = Serial.objects.filter(
        warranty_end__gt=today,
        warranty_end__lte=warning_date,
    ).count()
    low_stock_materials = Material.objects.filter(min_stock__gt=0, stock__lte=F('min_stock')).count()

    by_category = {category: {'materials': 0, 'stock': 0} for category in VALID_CATEGORIES}
    for row in Material.objects.values('category').annotate(materials=Count('id'), stock=Sum('stock')).order_by():
        by_category[row['category']] = {'materials': row['materials'], 'stock': row['stock'] or 0}

    by_serial_status = {
        row['status']: row['count']
        for row in Serial.objects.values('status').annotate(count=Count('id')).order_by()
    }
    by_order_status = {
        row['status']: row['count']
        for row in Order.objects.values('status').annotate(count=Count('id')).order_by()
    }

    return {
        'total_stock': total_stock,
        'serials_in_stock': serials_in_stock,
        'pending_orders': pending_orders,
        'active_assignments': active_assignments,
        'warranty_warnings': warranty_warnings,
        'low_stock_materials': low_stock_materials,
        'by_category': by_category,
        'by_serial_status': by_serial_status,
        'by_order_status': by_order_status,
        'generated_at': timezone.now().isoformat(),
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def dashboard(request):
    """Dashboard statistics, served from cache when available"""
    try:
        cached_data = get_cached_dashboard()
        if cached_data is not None:
            logger.info(f"Dashboard cache HIT (user: {request.user.username})")
            response = Response(cached_data)
            response['X-Cache'] = 'HIT'
            response['Cache-Control'] = 'private, max-age=60'
            return response
        logger.info(f"Dashboard cache MISS (user: {request.user.username})")
    except Exception as e:
        logger.warning(f"Cache unavailable, proceeding without cache: {e}")

    data = compute_dashboard_stats()

    try:
        cache_dashboard(data)
    except Exception as e:
        logger.warning(f"Could not cache dashboard statistics: {e}")

    response = Response(data)
    response['X-Cache'] = 'MISS'
    response['Cache-Control'] = 'private, max-age=60'
    return response
