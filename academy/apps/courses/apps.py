# FILE: /academy/apps/courses/apps.py
from django.apps import AppConfig


class CoursesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'academy.apps.courses'

    def ready(self):
        import academy.apps.courses.signals  # noqa
