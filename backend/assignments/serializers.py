from rest_framework import serializers

from .models import Assignment


class AssignmentSerializer(serializers.ModelSerializer):
    material_name = serializers.CharField(source='serial.material.name', read_only=True)
    material_category = serializers.CharField(source='serial.material.category', read_only=True)
    serial_status = serializers.CharField(source='serial.status', read_only=True)
    is_active = serializers.BooleanField(read_only=True)

    class Meta:
        model = Assignment
        fields = [
            'id', 'serial', 'serial_number', 'serial_status', 'material_name', 'material_category',
            'assigned_to', 'department', 'start_date', 'end_date', 'renewal_date', 'notes',
            'is_active', 'created_at', 'updated_at'
        ]
        read_only_fields = ['serial_number', 'end_date', 'created_at', 'updated_at']


class AssignSerialSerializer(serializers.Serializer):
    serial = serializers.IntegerField()
    assigned_to = serializers.CharField(max_length=200)
    department = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    start_date = serializers.DateTimeField(required=False, allow_null=True)
    renewal_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_assigned_to(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Le nom de la personne est requis.")
        return value


class AssignmentUpdateSerializer(serializers.ModelSerializer):
    """Editable details of an assignment; the serial and dates of hand-over are fixed"""

    class Meta:
        model = Assignment
        fields = ['assigned_to', 'department', 'renewal_date', 'notes']
