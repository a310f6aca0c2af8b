import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from django.db.models import Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404

from backend.core.permissions import CanManageOrders, CanReceiveDeliveries
from backend.core.utils import create_audit_log, paginated_response
from .delivery import confirm_delivery, get_delivery_progress, DeliveryError
from .models import Order
from .quote_document import QuoteDocumentError, quote_data_from_order, render_quote_html
from .quote_extraction import QuoteExtractionClient, QuoteExtractionError
from .serializers import OrderSerializer, DeliverySubmissionSerializer, QuoteExtractionRequestSerializer

logger = logging.getLogger(__name__)


@api_view(['GET', 'POST'])
@permission_classes([CanManageOrders])
def order_list_create(request):
    """List all orders or create a new order with its lines"""
    if request.method == 'GET':
        queryset = Order.objects.all().prefetch_related('lines').select_related('created_by')

        status_filter = request.query_params.get('status', None)
        supplier = request.query_params.get('supplier', None)
        search = request.query_params.get('search', None)

        if status_filter:
            queryset = queryset.filter(status=status_filter)
        if supplier:
            queryset = queryset.filter(supplier__icontains=supplier)
        if search:
            queryset = queryset.filter(Q(reference__icontains=search) | Q(supplier__icontains=search))

        # Most recently created first
        queryset = queryset.order_by('-created_at', '-id')
        return paginated_response(request, queryset, OrderSerializer)

    serializer = OrderSerializer(data=request.data)
    if serializer.is_valid():
        order = serializer.save(created_by=request.user)
        create_audit_log(
            request=request,
            action='create',
            model_name='Order',
            object_id=order.id,
            object_name=order.reference,
            object_reference=order.reference,
            changes={'supplier': order.supplier, 'amount': str(order.amount), 'lines': order.lines.count()},
        )
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([CanManageOrders])
def order_detail(request, pk):
    """Retrieve, update or delete an order"""
    order = get_object_or_404(Order.objects.prefetch_related('lines'), pk=pk)

    if request.method == 'GET':
        return Response(OrderSerializer(order).data)
    elif request.method in ('PUT', 'PATCH'):
        previous_status = order.status
        serializer = OrderSerializer(order, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            order = serializer.save()
            if order.status != previous_status:
                logger.info(f"Order {order.reference} status changed: {previous_status} -> {order.status}")
                create_audit_log(
                    request=request,
                    action='order_status_change',
                    model_name='Order',
                    object_id=order.id,
                    object_name=order.reference,
                    object_reference=order.reference,
                    changes={'status': {'old': previous_status, 'new': order.status}},
                )
            else:
                create_audit_log(
                    request=request,
                    action='update',
                    model_name='Order',
                    object_id=order.id,
                    object_name=order.reference,
                    object_reference=order.reference,
                )
            order = Order.objects.prefetch_related('lines').get(pk=order.pk)
            return Response(OrderSerializer(order).data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        order_id = order.id
        reference = order.reference
        order.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='Order',
            object_id=order_id,
            object_name=reference,
            object_reference=reference,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([CanReceiveDeliveries])
def order_deliver(request, pk):
    """
    Confirm the delivery of serial numbers for the lines of an order.

    Body: {"serial_numbers": {"<line id>": ["SN1", "SN2", ...]}}
    """
    order = get_object_or_404(Order, pk=pk)

    serializer = DeliverySubmissionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = confirm_delivery(
            order.pk,
            serializer.validated_data['serial_numbers'],
            user=request.user,
            request=request,
        )
    except DeliveryError as e:
        payload = e.result.as_dict() if e.result else {}
        payload['error'] = e.message
        return Response(payload, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    data = result.as_dict()
    if result.nothing_submitted:
        data['message'] = "Aucun numéro de série saisi : la commande n'a pas été modifiée."
    elif result.fully_delivered:
        data['message'] = "Livraison complète : la commande est maintenant livrée."
    else:
        data['message'] = "Livraison partielle enregistrée : la commande reste en attente des articles restants."
    data['order'] = OrderSerializer(Order.objects.prefetch_related('lines').get(pk=order.pk)).data
    return Response(data)


@api_view(['GET'])
@permission_classes([CanReceiveDeliveries])
def order_delivery_progress(request, pk):
    """Ordered vs. delivered quantity per line"""
    order = get_object_or_404(Order.objects.prefetch_related('lines'), pk=pk)
    return Response(get_delivery_progress(order))


@api_view(['POST'])
@permission_classes([CanManageOrders])
def extract_quote(request):
    """Extract supplier, reference, lines and total from a quote PDF"""
    serializer = QuoteExtractionRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    client = QuoteExtractionClient()
    try:
        quote = client.extract(
            pdf_text=serializer.validated_data.get('pdf_text') or None,
            pdf_base64=serializer.validated_data.get('pdf_base64') or None,
        )
    except QuoteExtractionError as e:
        return Response({'error': e.message}, status=e.status_code)

    create_audit_log(
        request=request,
        action='quote_extract',
        model_name='Order',
        object_id='quote',
        object_name=quote.supplier,
        object_reference=quote.reference,
        changes={'lines': len(quote.lines), 'total_amount': str(quote.total_amount)},
    )
    return Response(quote.as_dict())


def _quote_response(data):
    try:
        html = render_quote_html(data)
    except QuoteDocumentError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
    return HttpResponse(html, content_type='text/html; charset=utf-8')


@api_view(['POST'])
@permission_classes([CanManageOrders])
def quote_document(request):
    """Printable quote built from the posted reference, supplier and lines"""
    return _quote_response(request.data)


@api_view(['GET'])
@permission_classes([CanManageOrders])
def order_quote_document(request, pk):
    """Printable quote of an existing order"""
    order = get_object_or_404(Order.objects.prefetch_related('lines'), pk=pk)
    return _quote_response(quote_data_from_order(order))
