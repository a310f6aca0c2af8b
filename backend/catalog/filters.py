import django_filters
from django.db.models import Q, F
from .models import Material, Serial, CATEGORY_CHOICES, SERIAL_STATUS_CHOICES


class MaterialFilter(django_filters.FilterSet):
    """Filter for Material model using django-filter"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    category = django_filters.ChoiceFilter(choices=CATEGORY_CHOICES)
    low_stock = django_filters.BooleanFilter(method='filter_low_stock', label='Low Stock')

    class Meta:
        model = Material
        fields = ['search', 'category', 'low_stock']

    def filter_search(self, queryset, name, value):
        """Match every word against name, manufacturer, model or description"""
        words = value.split() if value else []
        for word in words:
            queryset = queryset.filter(
                Q(name__icontains=word) |
                Q(manufacturer__icontains=word) |
                Q(model__icontains=word) |
                Q(description__icontains=word)
            )
        return queryset

    def filter_low_stock(self, queryset, name, value):
        if value:
            return queryset.filter(min_stock__gt=0, stock__lte=F('min_stock'))
        return queryset


class SerialFilter(django_filters.FilterSet):
    """Filter for Serial model"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    status = django_filters.ChoiceFilter(choices=SERIAL_STATUS_CHOICES)
    material = django_filters.NumberFilter(field_name='material_id')
    category = django_filters.ChoiceFilter(field_name='material__category', choices=CATEGORY_CHOICES)
    order_line = django_filters.NumberFilter(field_name='order_line_id')
    warranty_before = django_filters.DateFilter(field_name='warranty_end', lookup_expr='lte')

    class Meta:
        model = Serial
        fields = ['search', 'status', 'material', 'category', 'order_line', 'warranty_before']

    def filter_search(self, queryset, name, value):
        value = (value or '').strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(serial_number__icontains=value) |
            Q(material__name__icontains=value) |
            Q(location__icontains=value)
        )
