"""
Role-based access control.

Roles are Django groups named after the application roles. Superusers always
count as admin; a user without any role group is a read-only reader.
"""
from rest_framework.permissions import BasePermission, SAFE_METHODS

ROLE_ADMIN = 'admin'
ROLE_STOREKEEPER = 'magasinier'
ROLE_BUYER = 'acheteur'
ROLE_READER = 'lecteur'

ROLE_CHOICES = [
    (ROLE_ADMIN, 'Administrateur'),
    (ROLE_STOREKEEPER, 'Magasinier'),
    (ROLE_BUYER, 'Acheteur'),
    (ROLE_READER, 'Lecteur'),
]
VALID_ROLES = [role for role, _ in ROLE_CHOICES]

STOCK_ROLES = (ROLE_ADMIN, ROLE_STOREKEEPER)
ORDER_ROLES = (ROLE_ADMIN, ROLE_BUYER)
DELIVERY_ROLES = (ROLE_ADMIN, ROLE_STOREKEEPER, ROLE_BUYER)
SUPPLIER_ROLES = (ROLE_ADMIN, ROLE_BUYER)


def get_user_role(user):
    """Return the single effective role of a user"""
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return ROLE_ADMIN
    names = set(user.groups.filter(name__in=VALID_ROLES).values_list('name', flat=True))
    # Highest privilege wins when a user sits in several role groups
    for role in VALID_ROLES:
        if role in names:
            return role
    return ROLE_READER


def user_has_role(user, roles):
    return get_user_role(user) in roles


def set_user_role(user, role):
    """Replace the user's role group, leaving unrelated groups alone"""
    from django.contrib.auth.models import Group

    if role not in VALID_ROLES:
        raise ValueError(f"Unknown role: {role}")
    group, _ = Group.objects.get_or_create(name=role)
    user.groups.remove(*user.groups.filter(name__in=VALID_ROLES))
    user.groups.add(group)


def get_capabilities(user):
    """Capability flags returned to the front end by /auth/me/"""
    role = get_user_role(user)
    return {
        'role': role,
        'is_admin': role == ROLE_ADMIN,
        'can_manage_stock': role in STOCK_ROLES,
        'can_manage_orders': role in ORDER_ROLES,
        'can_receive_deliveries': role in DELIVERY_ROLES,
        'can_manage_suppliers': role in SUPPLIER_ROLES,
        'can_access_settings': role == ROLE_ADMIN,
    }


class RoleRequired(BasePermission):
    """
    Any authenticated user may read; writes need one of `allowed_roles`.
    Set `read_roles` to restrict reads as well.
    """
    allowed_roles = ()
    read_roles = None
    message = "Vous n'avez pas les droits nécessaires pour cette action."

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if request.method in SAFE_METHODS:
            return self.read_roles is None or user_has_role(user, self.read_roles)
        return user_has_role(user, self.allowed_roles)


class IsAdminRole(RoleRequired):
    allowed_roles = (ROLE_ADMIN,)
    read_roles = (ROLE_ADMIN,)
    message = "Seuls les administrateurs peuvent accéder aux paramètres."


class CanManageStock(RoleRequired):
    allowed_roles = STOCK_ROLES


class CanManageOrders(RoleRequired):
    allowed_roles = ORDER_ROLES


class CanReceiveDeliveries(RoleRequired):
    allowed_roles = DELIVERY_ROLES


class CanManageSuppliers(RoleRequired):
    allowed_roles = SUPPLIER_ROLES
