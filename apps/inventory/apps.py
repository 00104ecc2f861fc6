# apps/inventory/apps.py
from django.apps import AppConfig


class InventoryAppConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.inventory'
    label = 'inventory'
    verbose_name = 'Inventory'
