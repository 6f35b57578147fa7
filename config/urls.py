from django.urls import path, include


urlpatterns = [
    path('exam-control/', include('examcontrol.urls')),
]
