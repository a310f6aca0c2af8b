from django.urls import path
from .views import assignment_list_create, assignment_detail, assignment_unassign

urlpatterns = [
    path('assignments/', assignment_list_create, name='assignment-list-create'),
    path('assignments/<int:pk>/', assignment_detail, name='assignment-detail'),
    path('assignments/<int:pk>/unassign/', assignment_unassign, name='assignment-unassign'),
]
