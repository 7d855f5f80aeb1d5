"""
WSGI config for garage_desk project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import logging
import os

from django.conf import settings
from django.core.wsgi import get_wsgi_application
from whitenoise import WhiteNoise

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'garage_desk.settings')

logger = logging.getLogger(__name__)

django_application = get_wsgi_application()

# Log whether the payment gateway is configured. Only presence is logged, never the key.
logger.info(
    "Razorpay configured=%s",
    bool(getattr(settings, "RAZORPAY_KEY_ID", "") and getattr(settings, "RAZORPAY_KEY_SECRET", "")),
)

# Serve collected static assets (admin, DRF browsable API) from the process itself.
application = WhiteNoise(django_application)

static_root = getattr(settings, 'STATIC_ROOT', None)
if static_root:
    application.add_files(static_root, prefix='static/')
