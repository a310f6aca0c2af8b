"""Audit logging helpers shared by every app"""
import logging

from django.db import transaction

from .models import AuditLog

logger = logging.getLogger(__name__)

# AuditLog.serial_number holds at most this many characters
MAX_SERIAL_SUMMARY_LENGTH = 1000


def get_client_ip(request):
    """Extract client IP address from request"""
    if not request or not hasattr(request, 'META'):
        return None
    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip() or None
    return request.META.get('REMOTE_ADDR') or None


def summarize_serial_numbers(serial_numbers):
    """Join serial numbers for the audit log, truncated to the column size"""
    summary = ', '.join(s for s in serial_numbers if s)
    if len(summary) > MAX_SERIAL_SUMMARY_LENGTH:
        summary = summary[:MAX_SERIAL_SUMMARY_LENGTH - 3] + '...'
    return summary or None


def create_audit_log(request=None, action=None, model_name=None, object_id=None,
                     changes=None, user=None, object_name=None, object_reference=None,
                     serial_number=None):
    """
    Create an audit log entry

    Args:
        request: Django request object (for user and IP) - optional if user is provided
        action: Action type (create, update, delete, delivery_receive, etc.)
        model_name: Name of the model being acted upon
        object_id: ID of the object (as string)
        changes: Dictionary of changes made
        user: Optional user override (defaults to request.user if request provided)
        object_name: Human-readable name (e.g., material name, order reference)
        object_reference: Reference identifier (e.g., order reference)
        serial_number: Serial number(s) involved, if any

    Never raises: a failed audit entry must not fail the audited operation.
    """
    if not action or not model_name or object_id is None:
        logger.warning(
            f"Audit log creation skipped: missing required fields "
            f"(action={action}, model_name={model_name}, object_id={object_id})"
        )
        return None

    audit_user = user
    if audit_user is None and request is not None:
        audit_user = getattr(request, 'user', None)
    if audit_user is not None and not audit_user.is_authenticated:
        audit_user = None

    try:
        # Savepoint so a failed insert leaves an enclosing transaction usable
        with transaction.atomic():
            return AuditLog.objects.create(
                user=audit_user,
                action=action,
                model_name=model_name,
                object_id=str(object_id),
                object_name=object_name,
                object_reference=object_reference,
                serial_number=serial_number,
                changes=changes or {},
                ip_address=get_client_ip(request),
            )
    except Exception as e:
        logger.error(f"Failed to create audit log: {str(e)}")
        return None


def paginated_response(request, queryset, serializer_class, default_limit=15, context=None):
    """Page a queryset with ?page= and ?limit= and wrap it in the list envelope"""
    from django.core.paginator import Paginator
    from rest_framework.response import Response

    try:
        page = max(int(request.query_params.get('page', 1)), 1)
        limit = max(int(request.query_params.get('limit', default_limit)), 1)
    except (TypeError, ValueError):
        page, limit = 1, default_limit

    paginator = Paginator(queryset, limit)
    page_obj = paginator.get_page(page)
    serializer = serializer_class(page_obj, many=True, context=context or {'request': request})
    return Response({
        'results': serializer.data,
        'count': paginator.count,
        'next': page_obj.next_page_number() if page_obj.has_next() else None,
        'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
        'page': page_obj.number,
        'page_size': limit,
        'total_pages': paginator.num_pages,
    })
