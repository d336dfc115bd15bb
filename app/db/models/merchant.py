# File: app/db/models/merchant.py
"""
Merchant and Location models.

A merchant owns one or more store locations and every sale rung up at
them. Merchants are onboarded outside this service; here they are read for
ownership checks, the return window and the gateway connected account.
"""

from sqlalchemy import Column, String, Integer, ForeignKey
from sqlalchemy.orm import relationship, validates

from app.db.models.base import (
    AbstractBase,
    ContactValidationMixin,
    ModelValidationError,
    TimestampMixin,
)

MIN_RETURN_PERIOD_DAYS = 1
MAX_RETURN_PERIOD_DAYS = 90


class Merchant(AbstractBase, ContactValidationMixin, TimestampMixin):
    """
    Merchant model representing a business using the POS.

    Attributes:
        business_name: Display name printed on receipts
        email: Contact email (unique)
        phone: Contact phone
        return_period: Days after purchase during which returns are accepted
        gateway_account_id: Connected account receiving gateway transfers
    """

    __tablename__ = "merchants"

    business_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50))
    return_period = Column(Integer, nullable=False, default=7)
    gateway_account_id = Column(String(255), nullable=True)

    locations = relationship(
        "Location", back_populates="merchant", cascade="all, delete-orphan"
    )

    @validates("return_period")
    def validate_return_period(self, key: str, days: int) -> int:
        if days is None:
            return days
        if not MIN_RETURN_PERIOD_DAYS <= days <= MAX_RETURN_PERIOD_DAYS:
            raise ModelValidationError(
                self,
                key,
                f"Return period must be between {MIN_RETURN_PERIOD_DAYS} and {MAX_RETURN_PERIOD_DAYS} days",
            )
        return days

    def __repr__(self) -> str:
        return f"<Merchant(id={self.id}, business_name='{self.business_name}')>"


class Location(AbstractBase, TimestampMixin):
    """
    Physical store location belonging to a merchant.

    Customers scan the location QR code at checkout; ``qr_code`` resolves
    the scan back to the location and its merchant.
    """

    __tablename__ = "locations"

    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    street = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    zip_code = Column(String(20))
    country = Column(String(100))
    phone = Column(String(50))
    # Code carried by the checkout QR displayed at this location
    qr_code = Column(String(36), unique=True, nullable=True, index=True)

    merchant = relationship("Merchant", back_populates="locations")

    @property
    def address_line(self) -> str:
        parts = [self.street, self.city, self.state, self.zip_code, self.country]
        return ", ".join(p for p in parts if p)

    def __repr__(self) -> str:
        return f"<Location(id={self.id}, merchant_id={self.merchant_id}, name='{self.name}')>"
