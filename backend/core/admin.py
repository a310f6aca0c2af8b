from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, AuditLog


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['username', 'email', 'display_name', 'department', 'site', 'is_active', 'date_joined']
    list_filter = ['is_active', 'is_superuser', 'groups', 'department']
    search_fields = ['username', 'email', 'display_name', 'department']
    ordering = ['username']
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Profil', {'fields': ('display_name', 'department', 'site', 'phone')}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Profil', {'fields': ('display_name', 'department', 'site', 'phone')}),
    )


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['user', 'action', 'model_name', 'object_name', 'object_reference', 'created_at']
    list_filter = ['action', 'model_name', 'created_at']
    search_fields = ['user__username', 'object_name', 'object_reference', 'serial_number']
    ordering = ['-created_at']
    readonly_fields = ['user', 'action', 'model_name', 'object_id', 'object_name', 'object_reference',
                       'serial_number', 'changes', 'ip_address', 'created_at']
