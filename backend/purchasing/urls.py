from django.urls import path
from .views import (
    order_list_create, order_detail, order_deliver, order_delivery_progress,
    extract_quote, quote_document, order_quote_document,
)

urlpatterns = [
    # Order endpoints
    path('orders/', order_list_create, name='order-list-create'),
    path('orders/extract-quote/', extract_quote, name='order-extract-quote'),
    path('orders/quote-document/', quote_document, name='order-quote-document'),
    path('orders/<int:pk>/', order_detail, name='order-detail'),
    path('orders/<int:pk>/deliver/', order_deliver, name='order-deliver'),
    path('orders/<int:pk>/delivery-progress/', order_delivery_progress, name='order-delivery-progress'),
    path('orders/<int:pk>/quote-document/', order_quote_document, name='order-quote-document-detail'),
]
