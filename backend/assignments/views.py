import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from django.db.models import Q
from django.shortcuts import get_object_or_404

from backend.core.permissions import CanManageStock
from backend.core.utils import create_audit_log, paginated_response
from .models import Assignment
from .serializers import AssignmentSerializer, AssignSerialSerializer, AssignmentUpdateSerializer
from .services import AssignmentError, assign_serial, unassign

logger = logging.getLogger(__name__)


@api_view(['GET', 'POST'])
@permission_classes([CanManageStock])
def assignment_list_create(request):
    """List assignments or assign an in-stock serial to someone"""
    if request.method == 'GET':
        queryset = Assignment.objects.select_related('serial', 'serial__material')

        active = request.query_params.get('active', None)
        serial_id = request.query_params.get('serial', None)
        search = request.query_params.get('search', None)

        if active is not None and active != '':
            if active.lower() in ('true', '1', 'yes'):
                queryset = queryset.filter(end_date__isnull=True)
            else:
                queryset = queryset.filter(end_date__isnull=False)
        if serial_id:
            queryset = queryset.filter(serial_id=serial_id)
        if search:
            queryset = queryset.filter(
                Q(serial_number__icontains=search) |
                Q(assigned_to__icontains=search) |
                Q(department__icontains=search)
            )

        return paginated_response(request, queryset, AssignmentSerializer, default_limit=50)

    serializer = AssignSerialSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        assignment = assign_serial(
            data['serial'],
            data['assigned_to'],
            department=data.get('department', ''),
            start_date=data.get('start_date'),
            renewal_date=data.get('renewal_date'),
            notes=data.get('notes', ''),
        )
    except AssignmentError as e:
        return Response({'error': e.message}, status=e.status_code)

    create_audit_log(
        request=request,
        action='serial_assign',
        model_name='Assignment',
        object_id=assignment.id,
        object_name=assignment.assigned_to,
        serial_number=assignment.serial_number,
        changes={'assigned_to': assignment.assigned_to, 'department': assignment.department},
    )
    assignment = Assignment.objects.select_related('serial', 'serial__material').get(pk=assignment.pk)
    return Response(AssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([CanManageStock])
def assignment_detail(request, pk):
    """Retrieve, update or delete an assignment"""
    assignment = get_object_or_404(Assignment.objects.select_related('serial', 'serial__material'), pk=pk)

    if request.method == 'GET':
        return Response(AssignmentSerializer(assignment).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = AssignmentUpdateSerializer(assignment, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            create_audit_log(
                request=request,
                action='update',
                model_name='Assignment',
                object_id=assignment.id,
                object_name=assignment.assigned_to,
                serial_number=assignment.serial_number,
            )
            return Response(AssignmentSerializer(assignment).data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        # Only closed assignments can be removed, otherwise the serial would stay "Attribué"
        if assignment.is_active:
            return Response(
                {'error': "Terminez l'attribution avant de la supprimer."},
                status=status.HTTP_400_BAD_REQUEST
            )
        assignment_id = assignment.id
        serial_number = assignment.serial_number
        assigned_to = assignment.assigned_to
        assignment.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='Assignment',
            object_id=assignment_id,
            object_name=assigned_to,
            serial_number=serial_number,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([CanManageStock])
def assignment_unassign(request, pk):
    """End an assignment and put the serial back in stock"""
    notes = request.data.get('notes') or None
    try:
        assignment = unassign(pk, notes=notes)
    except AssignmentError as e:
        return Response({'error': e.message}, status=e.status_code)

    create_audit_log(
        request=request,
        action='serial_unassign',
        model_name='Assignment',
        object_id=assignment.id,
        object_name=assignment.assigned_to,
        serial_number=assignment.serial_number,
        changes={'end_date': assignment.end_date.isoformat(), 'notes': notes},
    )
    assignment = Assignment.objects.select_related('serial', 'serial__material').get(pk=assignment.pk)
    return Response(AssignmentSerializer(assignment).data)
