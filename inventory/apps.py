"""Django app configuration for the Inventory app."""

from django.apps import AppConfig


class InventoryConfig(AppConfig):
    """AppConfig for the inventory domain (branch stock ledger and transfers)."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "inventory"
