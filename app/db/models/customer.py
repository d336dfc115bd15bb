# File: app/db/models/customer.py
"""
Customer model.

Customers are linked to a sale at checkout by ID or by their customer code
(scanned from the app). The gateway customer profile ID is created lazily on
first gateway payment and cached here.
"""

from sqlalchemy import Column, String, Integer

from app.db.models.base import AbstractBase, ContactValidationMixin, TimestampMixin


class Customer(AbstractBase, ContactValidationMixin, TimestampMixin):
    """
    Customer model.

    Attributes:
        first_name, last_name: Customer name
        email: Contact email
        phone: Contact phone
        customer_code: Short code presented at the till (unique)
        gateway_customer_id: Cached payment-gateway customer profile ID
        version: Optimistic concurrency counter
    """

    __tablename__ = "customers"

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50))
    customer_code = Column(String(32), nullable=False, unique=True, index=True)
    gateway_customer_id = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, customer_code='{self.customer_code}')>"
