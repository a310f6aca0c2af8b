from rest_framework import serializers
from .models import Material, Serial
from .services import parse_flexible_date


class MaterialSerializer(serializers.ModelSerializer):
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Material
        fields = [
            'id', 'name', 'category', 'description', 'manufacturer', 'model',
            'stock', 'min_stock', 'unit_price', 'image_url', 'is_low_stock',
            'created_at', 'updated_at'
        ]
        # Stock follows the serials; it is never edited by hand
        read_only_fields = ['stock', 'created_at', 'updated_at']

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Le nom du matériel est requis.")
        return value


class SerialSerializer(serializers.ModelSerializer):
    material_name = serializers.CharField(source='material.name', read_only=True)
    material_category = serializers.CharField(source='material.category', read_only=True)
    order_reference = serializers.CharField(source='order_line.order.reference', read_only=True, default=None)

    class Meta:
        model = Serial
        fields = [
            'id', 'serial_number', 'material', 'material_name', 'material_category',
            'order_line', 'order_reference', 'status', 'purchase_date', 'warranty_end',
            'renewal_date', 'location', 'notes', 'created_at', 'updated_at'
        ]
        read_only_fields = ['order_line', 'created_at', 'updated_at']

    def validate_serial_number(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Le numéro de série est requis.")
        return value


class MaterialDetailSerializer(MaterialSerializer):
    """Material with its serials, for the material page"""
    serials = SerialSerializer(many=True, read_only=True)

    class Meta(MaterialSerializer.Meta):
        fields = MaterialSerializer.Meta.fields + ['serials']


class FlexibleDateField(serializers.Field):
    """Date accepting YYYY-MM-DD or DD/MM/YYYY"""

    def to_internal_value(self, data):
        try:
            return parse_flexible_date(data)
        except ValueError:
            raise serializers.ValidationError("Date invalide.")

    def to_representation(self, value):
        return value.isoformat() if value else None


class ManualSerialSerializer(serializers.Serializer):
    """Input of the manual serial add form"""
    material = serializers.PrimaryKeyRelatedField(queryset=Material.objects.all())
    serial_number = serializers.CharField(max_length=100)
    purchase_date = FlexibleDateField(required=False, allow_null=True)
    warranty_end = FlexibleDateField(required=False, allow_null=True)
    renewal_date = FlexibleDateField(required=False, allow_null=True)
    location = serializers.CharField(max_length=200, required=False, allow_blank=True)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)

    def validate_serial_number(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Le numéro de série est requis.")
        return value

