from django.apps import AppConfig


class ExamControlConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'examcontrol'
    verbose_name = 'Exam Control'
