# File: app/api/endpoints/__init__.py
"""
API endpoints package for Receets.

This package contains the endpoint modules for the point-of-sale flow,
payments, sale browsing and location QR codes.
"""

from app.api.endpoints import (
    payments,
    pos,
    qrcode,
    sales,
)
