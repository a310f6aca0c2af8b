import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from django.db import transaction
from django.http import HttpResponse
from django.shortcuts import get_object_or_404

from backend.core.permissions import CanManageStock
from backend.core.utils import create_audit_log, paginated_response
from .filters import MaterialFilter, SerialFilter
from .models import Material, Serial, SERIAL_IN_STOCK
from .serializers import (
    MaterialSerializer, MaterialDetailSerializer, SerialSerializer, ManualSerialSerializer
)
from .services import (
    SerialError, add_manual_serial, import_serials_csv, build_csv_template,
    discard_serial, apply_status_change, increment_stock, decrement_stock,
    CSV_TEMPLATE_FILENAME,
)

logger = logging.getLogger(__name__)


# Material views
@api_view(['GET', 'POST'])
@permission_classes([CanManageStock])
def material_list_create(request):
    """List all materials or create a new material"""
    if request.method == 'GET':
        filterset = MaterialFilter(request.query_params, queryset=Material.objects.all())
        if not filterset.is_valid():
            return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)
        return paginated_response(request, filterset.qs.order_by('name'), MaterialSerializer, default_limit=50)

    serializer = MaterialSerializer(data=request.data)
    if serializer.is_valid():
        material = serializer.save()
        create_audit_log(
            request=request,
            action='create',
            model_name='Material',
            object_id=material.id,
            object_name=material.name,
            changes={'category': material.category},
        )
        return Response(MaterialSerializer(material).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([CanManageStock])
def material_detail(request, pk):
    """Retrieve, update or delete a material"""
    material = get_object_or_404(Material, pk=pk)

    if request.method == 'GET':
        material = Material.objects.prefetch_related('serials').get(pk=material.pk)
        return Response(MaterialDetailSerializer(material).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = MaterialSerializer(material, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            create_audit_log(
                request=request,
                action='update',
                model_name='Material',
                object_id=material.id,
                object_name=material.name,
                changes=dict(request.data),
            )
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        if material.serials.exists():
            return Response(
                {'error': 'Impossible de supprimer un matériel qui possède des numéros de série.'},
                status=status.HTTP_400_BAD_REQUEST
            )
        material_id = material.id
        material_name = material.name
        material.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='Material',
            object_id=material_id,
            object_name=material_name,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


# Serial views
@api_view(['GET', 'POST'])
@permission_classes([CanManageStock])
def serial_list_create(request):
    """List serials or create one"""
    if request.method == 'GET':
        queryset = Serial.objects.select_related('material', 'order_line', 'order_line__order')
        filterset = SerialFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)
        return paginated_response(request, filterset.qs.order_by('-created_at'), SerialSerializer, default_limit=50)

    serializer = SerialSerializer(data=request.data)
    if serializer.is_valid():
        with transaction.atomic():
            serial = serializer.save()
            if serial.status == SERIAL_IN_STOCK:
                increment_stock(serial.material_id)
        create_audit_log(
            request=request,
            action='serial_add',
            model_name='Serial',
            object_id=serial.id,
            object_name=serial.material.name,
            serial_number=serial.serial_number,
        )
        return Response(SerialSerializer(serial).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([CanManageStock])
def serial_detail(request, pk):
    """Retrieve, update or delete a serial"""
    serial = get_object_or_404(Serial.objects.select_related('material'), pk=pk)

    if request.method == 'GET':
        return Response(SerialSerializer(serial).data)
    elif request.method in ('PUT', 'PATCH'):
        old_status = serial.status
        old_material_id = serial.material_id
        serializer = SerialSerializer(serial, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            with transaction.atomic():
                serial = serializer.save()
                if serial.material_id != old_material_id:
                    # Moved to another material: stock follows the unit
                    if old_status == SERIAL_IN_STOCK:
                        decrement_stock(old_material_id)
                    if serial.status == SERIAL_IN_STOCK:
                        increment_stock(serial.material_id)
                else:
                    apply_status_change(serial.material_id, old_status, serial.status)
            create_audit_log(
                request=request,
                action='update',
                model_name='Serial',
                object_id=serial.id,
                object_name=serial.material.name,
                serial_number=serial.serial_number,
                changes={'status': {'old': old_status, 'new': serial.status}},
            )
            return Response(SerialSerializer(serial).data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        serial_id = serial.id
        serial_number = serial.serial_number
        with transaction.atomic():
            if serial.status == SERIAL_IN_STOCK:
                decrement_stock(serial.material_id)
            serial.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='Serial',
            object_id=serial_id,
            serial_number=serial_number,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([CanManageStock])
def serial_manual_add(request):
    """Add one serial to an existing material"""
    serializer = ManualSerialSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        serial = add_manual_serial(
            material=data['material'],
            serial_number=data['serial_number'],
            purchase_date=data.get('purchase_date'),
            warranty_end=data.get('warranty_end'),
            renewal_date=data.get('renewal_date'),
            location=data.get('location', ''),
            notes=data.get('notes', ''),
        )
    except SerialError as e:
        return Response({'error': e.message}, status=e.status_code)

    create_audit_log(
        request=request,
        action='serial_add',
        model_name='Serial',
        object_id=serial.id,
        object_name=serial.material.name,
        serial_number=serial.serial_number,
    )
    return Response(SerialSerializer(serial).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([CanManageStock])
def serial_import(request):
    """Import serials from an uploaded CSV file (multipart field `file`)"""
    upload = request.FILES.get('file')
    if upload is None:
        return Response({'error': 'Veuillez sélectionner un fichier'}, status=status.HTTP_400_BAD_REQUEST)
    if not upload.name.lower().endswith('.csv'):
        return Response({'error': 'Veuillez sélectionner un fichier CSV'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        content = upload.read().decode('utf-8-sig')
    except UnicodeDecodeError:
        return Response({'error': 'Le fichier doit être encodé en UTF-8'}, status=status.HTTP_400_BAD_REQUEST)

    result = import_serials_csv(content)
    if result.success == 0 and not result.errors:
        return Response(
            {'error': 'Aucune donnée valide trouvée dans le fichier'},
            status=status.HTTP_400_BAD_REQUEST
        )

    if result.success:
        create_audit_log(
            request=request,
            action='serial_import',
            model_name='Serial',
            object_id='import',
            object_name=upload.name,
            changes={'success': result.success, 'errors': len(result.errors)},
        )
    return Response({'success': result.success, 'errors': result.errors})


@api_view(['GET'])
@permission_classes([CanManageStock])
def serial_import_template(request):
    """Download the CSV import template"""
    response = HttpResponse(build_csv_template(), content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{CSV_TEMPLATE_FILENAME}"'
    return response


@api_view(['POST'])
@permission_classes([CanManageStock])
def serial_discard(request, pk):
    """Retire a serial (mise au rebut)"""
    serial = get_object_or_404(Serial.objects.select_related('material'), pk=pk)
    notes = request.data.get('notes') or None

    try:
        previous_status = discard_serial(serial, notes=notes)
    except SerialError as e:
        return Response({'error': e.message}, status=e.status_code)

    create_audit_log(
        request=request,
        action='serial_discard',
        model_name='Serial',
        object_id=serial.id,
        object_name=serial.material.name,
        serial_number=serial.serial_number,
        changes={'status': {'old': previous_status, 'new': serial.status}, 'notes': notes},
    )
    serial.refresh_from_db()
    return Response(SerialSerializer(serial).data)
