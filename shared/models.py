# shared/models.py
"""
Abstract base models shared by the larder apps.

TimestampMixin: created_at and updated_at on lots and items
"""
from django.db import models


class TimestampMixin(models.Model):
    """
    Abstract base model that adds timestamp tracking.

    Provides:
    - created_at: Set once when record is created
    - updated_at: Updated every time record is saved
    """
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
