# File: app/db/models/enums.py
"""
Enumerations shared by the Receets models, schemas and services.

Values are the lower-case wire names used by the POS clients; the database
stores the values as well (see ``enum_column`` in ``app.db.models.base``).
"""

from enum import Enum


class SaleType(str, Enum):
    PURCHASE = "purchase"
    RETURN = "return"
    EXCHANGE = "exchange"


class SaleStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VOIDED = "voided"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(str, Enum):
    RECEETS_PAY = "receets_pay"  # Gateway-backed
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"
    CASH = "cash"
    CARD = "card"
    OTHER = "other"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PromoType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
