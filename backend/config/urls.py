"""
URL configuration for the Parc IT backend.

Every app mounts its routes under the versioned API prefix.
"""
from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.views.static import serve

admin.site.site_header = "Parc IT - Administration"
admin.site.site_title = "Parc IT"
admin.site.index_title = "Gestion du parc informatique"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.parties.urls')),
    path('api/v1/', include('backend.catalog.urls')),
    path('api/v1/', include('backend.purchasing.urls')),
    path('api/v1/', include('backend.assignments.urls')),
    path('api/v1/', include('backend.reports.urls')),
    re_path(r'^media/(?P<path>.*)$', serve, {'document_root': settings.MEDIA_ROOT}),
    re_path(r'^static/(?P<path>.*)$', serve, {'document_root': settings.STATIC_ROOT}),
]
