from django.contrib import admin
from .models import Material, Serial


class SerialInline(admin.TabularInline):
    model = Serial
    extra = 0
    fields = ['serial_number', 'status', 'purchase_date', 'warranty_end', 'location']
    show_change_link = True


@admin.register(Material)
class MaterialAdmin(admin.ModelAdmin):
    list_display = ['name', 'category', 'manufacturer', 'stock', 'min_stock', 'unit_price', 'updated_at']
    list_filter = ['category']
    search_fields = ['name', 'manufacturer', 'model']
    ordering = ['name']
    readonly_fields = ['stock', 'created_at', 'updated_at']
    inlines = [SerialInline]


@admin.register(Serial)
class SerialAdmin(admin.ModelAdmin):
    list_display = ['serial_number', 'material', 'status', 'purchase_date', 'warranty_end', 'location']
    list_filter = ['status', 'material__category']
    search_fields = ['serial_number', 'material__name', 'location']
    raw_id_fields = ['material', 'order_line']
    ordering = ['-created_at']
