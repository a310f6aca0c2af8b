import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer, TokenRefreshSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction
from django.db.models import Q
from django.shortcuts import get_object_or_404
from django.utils.crypto import get_random_string

from .models import AuditLog
from .permissions import IsAdminRole, get_capabilities, get_user_role, set_user_role
from .serializers import (
    UserSerializer, UserCreateSerializer, UserUpdateSerializer,
    BulkUserEntrySerializer, AuditLogSerializer
)
from .utils import create_audit_log, paginated_response

logger = logging.getLogger(__name__)

User = get_user_model()

BULK_BATCH_SIZE = 10
GENERATED_PASSWORD_LENGTH = 12


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        if not self.user.is_active:
            raise AuthenticationFailed('Ce compte est désactivé.')
        return data

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['username'] = user.username
        token['role'] = get_user_role(user)
        return token


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Token refresh that reports deleted users as an invalid token"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except ObjectDoesNotExist:
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    serializer_class = CustomTokenRefreshSerializer


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Current user with role and capability flags"""
    user_data = UserSerializer(request.user).data
    user_data.update(get_capabilities(request.user))
    return Response(user_data)


# User views (settings area)
@api_view(['GET', 'POST'])
@permission_classes([IsAdminRole])
def user_list_create(request):
    """List all users or create a new user"""
    if request.method == 'GET':
        users = User.objects.all().prefetch_related('groups').order_by('display_name', 'username')
        search = request.query_params.get('search', '').strip()
        if search:
            users = users.filter(
                Q(display_name__icontains=search) |
                Q(email__icontains=search) |
                Q(username__icontains=search) |
                Q(department__icontains=search)
            )
        serializer = UserSerializer(users, many=True)
        return Response(serializer.data)

    data = request.data.copy()
    if not data.get('username') and data.get('email'):
        data['username'] = data['email']
    serializer = UserCreateSerializer(data=data)
    if serializer.is_valid():
        user = serializer.save()
        create_audit_log(
            request=request,
            action='create',
            model_name='User',
            object_id=user.id,
            object_name=user.display_name or user.username,
            changes={'role': get_user_role(user)},
        )
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAdminRole])
def user_detail(request, pk):
    """Retrieve, update or delete a user"""
    user = get_object_or_404(User, pk=pk)

    if request.method == 'GET':
        return Response(UserSerializer(user).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = UserUpdateSerializer(user, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            user = serializer.save()
            create_audit_log(
                request=request,
                action='update',
                model_name='User',
                object_id=user.id,
                object_name=user.display_name or user.username,
                changes={k: v for k, v in request.data.items() if k != 'password'},
            )
            return Response(UserSerializer(user).data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        if user.pk == request.user.pk:
            return Response(
                {'error': 'Vous ne pouvez pas supprimer votre propre compte.'},
                status=status.HTTP_400_BAD_REQUEST
            )
        user_id = user.id
        user_name = user.display_name or user.username
        user.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='User',
            object_id=user_id,
            object_name=user_name,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


def _create_bulk_user(entry):
    """Create one user from a validated bulk entry. Returns (user, password)."""
    password = entry.get('password') or get_random_string(GENERATED_PASSWORD_LENGTH)
    with transaction.atomic():
        user = User(
            username=entry['email'],
            email=entry['email'],
            display_name=entry['display_name'],
            department=entry.get('department') or None,
            site=entry.get('site') or None,
            phone=entry.get('phone') or None,
            is_active=True,
        )
        user.set_password(password)
        user.save()
        set_user_role(user, entry['role'])
    return user, password


@api_view(['POST'])
@permission_classes([IsAdminRole])
def bulk_create_users(request):
    """
    Create many users at once.

    Body: {"users": [{email, display_name, department?, site?, phone?, role?, password?}, ...]}
    Every entry is validated before anything is written; the first invalid
    entry rejects the whole request. Valid entries are then created in batches,
    an existing email being reported as a per-entry error.
    """
    entries = request.data.get('users')
    if not isinstance(entries, list) or not entries:
        return Response({'error': 'Aucun utilisateur à importer.'}, status=status.HTTP_400_BAD_REQUEST)

    validated = []
    for index, entry in enumerate(entries, start=1):
        serializer = BulkUserEntrySerializer(data=entry)
        if not serializer.is_valid():
            return Response({
                'error': f'Entrée {index} invalide.',
                'details': serializer.errors,
            }, status=status.HTTP_400_BAD_REQUEST)
        data = dict(serializer.validated_data)
        data['email'] = data['email'].strip().lower()
        validated.append(data)

    success_count = 0
    errors = []
    created_users = []

    for start in range(0, len(validated), BULK_BATCH_SIZE):
        batch = validated[start:start + BULK_BATCH_SIZE]
        for entry in batch:
            email = entry['email']
            if User.objects.filter(Q(email__iexact=email) | Q(username__iexact=email)).exists():
                errors.append({'email': email, 'error': 'Utilisateur existe déjà'})
                continue
            try:
                user, password = _create_bulk_user(entry)
            except Exception as e:
                logger.error(f"Bulk user creation failed for {email}: {str(e)}")
                errors.append({'email': email, 'error': str(e)})
                continue
            success_count += 1
            created = {
                'id': user.id,
                'email': user.email,
                'display_name': user.display_name,
                'role': entry['role'],
            }
            if not entry.get('password'):
                created['generated_password'] = password
            created_users.append(created)

    logger.info(f"Bulk user import: {success_count} created, {len(errors)} errors")
    if success_count:
        create_audit_log(
            request=request,
            action='user_import',
            model_name='User',
            object_id='bulk',
            object_name=f'{success_count} utilisateur(s)',
            changes={'created': [u['email'] for u in created_users], 'errors': len(errors)},
        )

    return Response({
        'success': success_count,
        'errors': errors,
        'created_users': created_users,
    })


# AuditLog views (read-only)
@api_view(['GET'])
@permission_classes([IsAdminRole])
def audit_log_list(request):
    """List audit logs with filtering"""
    queryset = AuditLog.objects.all().select_related('user')

    action_filter = request.query_params.get('action')
    if action_filter:
        queryset = queryset.filter(action=action_filter)

    model_filter = request.query_params.get('model')
    if model_filter:
        queryset = queryset.filter(model_name=model_filter)

    search = request.query_params.get('search', '').strip()
    if search:
        queryset = queryset.filter(
            Q(object_name__icontains=search) |
            Q(object_reference__icontains=search) |
            Q(serial_number__icontains=search)
        )

    date_from = request.query_params.get('date_from')
    date_to = request.query_params.get('date_to')
    if date_from:
        queryset = queryset.filter(created_at__date__gte=date_from)
    if date_to:
        queryset = queryset.filter(created_at__date__lte=date_to)

    return paginated_response(request, queryset.order_by('-created_at'), AuditLogSerializer, default_limit=50)


@api_view(['GET'])
@permission_classes([IsAdminRole])
def audit_log_detail(request, pk):
    audit_log = get_object_or_404(AuditLog, pk=pk)
    return Response(AuditLogSerializer(audit_log).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def global_search(request):
    """Search materials, serials, orders, suppliers and assignments"""
    from backend.catalog.filters import MaterialFilter, SerialFilter
    from backend.catalog.models import Material, Serial
    from backend.catalog.serializers import MaterialSerializer, SerialSerializer
    from backend.parties.models import Supplier
    from backend.parties.serializers import SupplierSerializer
    from backend.purchasing.models import Order
    from backend.purchasing.serializers import OrderSerializer
    from backend.assignments.models import Assignment
    from backend.assignments.serializers import AssignmentSerializer

    query = request.query_params.get('q', '').strip()
    results = {
        'materials': [],
        'serials': [],
        'orders': [],
        'suppliers': [],
        'assignments': [],
    }
    if not query:
        return Response(results)

    materials = MaterialFilter({'search': query}, queryset=Material.objects.all()).qs[:20]
    results['materials'] = MaterialSerializer(materials, many=True).data

    serials = SerialFilter({'search': query}, queryset=Serial.objects.select_related('material')).qs[:20]
    results['serials'] = SerialSerializer(serials, many=True).data

    orders = Order.objects.filter(
        Q(reference__icontains=query) | Q(supplier__icontains=query)
    ).prefetch_related('lines')[:20]
    results['orders'] = OrderSerializer(orders, many=True).data

    suppliers = Supplier.objects.filter(
        Q(name__icontains=query) | Q(contact__icontains=query) | Q(email__icontains=query)
    )[:20]
    results['suppliers'] = SupplierSerializer(suppliers, many=True).data

    assignments = Assignment.objects.filter(
        Q(serial_number__icontains=query) | Q(assigned_to__icontains=query)
    ).select_related('serial', 'serial__material')[:20]
    results['assignments'] = AssignmentSerializer(assignments, many=True).data

    return Response(results)
