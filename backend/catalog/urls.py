from django.urls import path
from .views import (
    material_list_create, material_detail,
    serial_list_create, serial_detail, serial_manual_add,
    serial_import, serial_import_template, serial_discard,
)

urlpatterns = [
    # Material endpoints
    path('materials/', material_list_create, name='material-list-create'),
    path('materials/<int:pk>/', material_detail, name='material-detail'),

    # Serial endpoints
    path('serials/', serial_list_create, name='serial-list-create'),
    path('serials/manual/', serial_manual_add, name='serial-manual-add'),
    path('serials/import/', serial_import, name='serial-import'),
    path('serials/import/template/', serial_import_template, name='serial-import-template'),
    path('serials/<int:pk>/', serial_detail, name='serial-detail'),
    path('serials/<int:pk>/discard/', serial_discard, name='serial-discard'),
]
