from django.contrib import admin
from .models import Order, OrderLine


class OrderLineInline(admin.TabularInline):
    model = OrderLine
    extra = 0
    fields = ['material_name', 'material', 'quantity', 'unit_price', 'tax_rate', 'delivered_quantity']
    readonly_fields = ['delivered_quantity']
    raw_id_fields = ['material']


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['reference', 'supplier', 'amount', 'status', 'site', 'created_by', 'created_at']
    list_filter = ['status', 'site', 'created_at']
    search_fields = ['reference', 'supplier', 'requested_by']
    ordering = ['-created_at']
    inlines = [OrderLineInline]
