from django.apps import AppConfig


class ConnectionConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "connection"
