# apps/alerts/apps.py
from django.apps import AppConfig


class AlertsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.alerts'
    label = 'alerts'
    verbose_name = 'Inventory Alerts'
