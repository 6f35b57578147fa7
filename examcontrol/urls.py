from django.urls import path
from . import views

app_name = 'examcontrol'

urlpatterns = [
    path('results/', views.results, name='results'),
    path('ranking/', views.ranking, name='ranking'),

    # Statistics
    path('statistics/', views.statistics, name='statistics'),
    path('subject-statistics/', views.subject_statistics, name='subject_statistics'),

    path('certificates/', views.certificates, name='certificates'),
]
