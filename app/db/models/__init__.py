"""
Initializes the models package for SQLAlchemy declarative base.

Importing the model classes here populates ``Base.metadata`` with every table
definition before ``Base.metadata.create_all()`` is called.
"""

# Import the Base for declarative models
from app.db.models.base import Base, ModelValidationError

from app.db.models.enums import (
    SaleType,
    SaleStatus,
    PaymentMethod,
    PaymentStatus,
    PromoType,
)

from app.db.models.merchant import Merchant, Location
from app.db.models.customer import Customer
from app.db.models.sales import Sale, LineItem, Payment, SETTLED_PAYMENT_STATUSES

__all__ = [
    "Base",
    "ModelValidationError",
    "SaleType",
    "SaleStatus",
    "PaymentMethod",
    "PaymentStatus",
    "PromoType",
    "Merchant",
    "Location",
    "Customer",
    "Sale",
    "LineItem",
    "Payment",
    "SETTLED_PAYMENT_STATUSES",
]
