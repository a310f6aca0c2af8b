from django.contrib import admin
from .models import Assignment


@admin.register(Assignment)
class AssignmentAdmin(admin.ModelAdmin):
    list_display = ['serial_number', 'assigned_to', 'department', 'start_date', 'end_date']
    list_filter = ['department', 'end_date']
    search_fields = ['serial_number', 'assigned_to', 'department']
    raw_id_fields = ['serial']
    ordering = ['-created_at']
