from decimal import Decimal

from django.db import transaction
from rest_framework import serializers

from .models import Order, OrderLine


class OrderLineSerializer(serializers.ModelSerializer):
    id = serializers.IntegerField(required=False)
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))
    line_total = serializers.SerializerMethodField()
    is_fully_delivered = serializers.BooleanField(read_only=True)

    class Meta:
        model = OrderLine
        fields = [
            'id', 'material', 'material_name', 'quantity', 'unit_price', 'tax_rate',
            'delivered_quantity', 'line_total', 'is_fully_delivered'
        ]
        # Only delivery confirmation moves the delivered counter
        read_only_fields = ['delivered_quantity']

    def get_line_total(self, obj):
        return str(obj.get_line_total())

    def validate_material_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Le nom du matériel est requis.")
        return value


class OrderSerializer(serializers.ModelSerializer):
    lines = OrderLineSerializer(many=True, required=False)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=Decimal('0'))
    subtotal = serializers.SerializerMethodField()
    total = serializers.SerializerMethodField()
    created_by_name = serializers.CharField(source='created_by.username', read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'reference', 'supplier', 'amount', 'currency', 'description', 'requested_by',
            'site', 'status', 'created_by', 'created_by_name', 'created_at', 'updated_at',
            'lines', 'subtotal', 'total'
        ]
        read_only_fields = ['created_by', 'created_at', 'updated_at']

    def get_subtotal(self, obj):
        return str(obj.get_subtotal())

    def get_total(self, obj):
        return str(obj.get_total().quantize(Decimal('0.01')))

    def validate_reference(self, value):
        value = value.strip()
        if len(value) < 2:
            raise serializers.ValidationError("La référence est requise.")
        return value

    def validate_supplier(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Le fournisseur est requis.")
        return value

    @staticmethod
    def _total_from_lines(lines_data):
        total = Decimal('0')
        for line in lines_data:
            line_total = line['quantity'] * line['unit_price']
            tax_rate = line.get('tax_rate', Decimal('20'))
            total += line_total * (1 + tax_rate / Decimal('100'))
        return total.quantize(Decimal('0.01'))

    @transaction.atomic
    def create(self, validated_data):
        lines_data = validated_data.pop('lines', [])
        if validated_data.get('amount') is None:
            validated_data['amount'] = self._total_from_lines(lines_data)
        order = Order.objects.create(**validated_data)
        for line_data in lines_data:
            line_data.pop('id', None)
            OrderLine.objects.create(order=order, **line_data)
        return order

    @transaction.atomic
    def update(self, instance, validated_data):
        lines_data = validated_data.pop('lines', None)
        instance = super().update(instance, validated_data)
        if lines_data is None:
            return instance

        existing = {line.id: line for line in instance.lines.all()}
        kept_ids = set()
        for line_data in lines_data:
            line_id = line_data.pop('id', None)
            if line_id is not None and line_id in existing:
                line = existing[line_id]
                for attr, value in line_data.items():
                    setattr(line, attr, value)
                line.save()
                kept_ids.add(line_id)
            else:
                OrderLine.objects.create(order=instance, **line_data)

        for line_id, line in existing.items():
            if line_id in kept_ids:
                continue
            if line.delivered_quantity > 0:
                raise serializers.ValidationError({
                    'lines': f"La ligne « {line.material_name} » a déjà été livrée et ne peut pas être supprimée."
                })
            line.delete()

        if 'amount' not in validated_data:
            instance.amount = self._total_from_lines([
                {'quantity': l.quantity, 'unit_price': l.unit_price, 'tax_rate': l.tax_rate}
                for l in instance.lines.all()
            ])
            instance.save(update_fields=['amount', 'updated_at'])
        return instance


class DeliverySubmissionSerializer(serializers.Serializer):
    """{"serial_numbers": {"<line id>": ["SN1", "SN2"]}}"""
    serial_numbers = serializers.DictField(
        child=serializers.ListField(child=serializers.CharField(allow_blank=True, trim_whitespace=False), allow_empty=True)
    )


class QuoteExtractionRequestSerializer(serializers.Serializer):
    pdf_text = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    pdf_base64 = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not (attrs.get('pdf_text') or '').strip() and not attrs.get('pdf_base64'):
            raise serializers.ValidationError("Le texte ou le contenu du PDF est requis.")
        return attrs
