import os

from django.apps import AppConfig

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'krt.settings')


class App(AppConfig):
    name = 'krt'
    default_auto_field = 'django.db.models.BigAutoField'
