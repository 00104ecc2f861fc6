"""
ASGI config for the larder project.

Inventory alerts and lot changes are sent to the channel layer groups
'inventory-alerts' and 'inventory-changes'.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'larder.settings')

# Initialize Django ASGI application early to ensure apps are loaded
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter

application = ProtocolTypeRouter({
    'http': django_asgi_app,
})
