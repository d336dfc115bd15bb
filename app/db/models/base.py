# File: app/db/models/base.py
"""
Base models and mixins for Receets.

This module provides the foundation for all database models in the system:
- Base SQLAlchemy model class
- Common mixins for shared functionality (timestamps, contact validation)
- Helpers for money and enum columns
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict, Optional, Type
import uuid
import re

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric, Enum
from sqlalchemy.orm import declarative_base, validates
from sqlalchemy import MetaData

# Create the SQLAlchemy base

Base = declarative_base(metadata=MetaData())


def money_column(**kwargs) -> Column:
    """Signed decimal column holding an amount in currency units (cents precision)."""
    kwargs.setdefault("default", Decimal("0.00"))
    kwargs.setdefault("nullable", False)
    return Column(Numeric(12, 2, asdecimal=True), **kwargs)


def enum_column(enum_class: Type[PyEnum], **kwargs) -> Column:
    """Enum column persisted by value (e.g. "in_progress") rather than by name."""
    return Column(
        Enum(
            enum_class,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            length=32,
            validate_strings=True,
        ),
        **kwargs,
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ModelValidationError(ValueError):
    """
    Exception raised for model validation errors.

    Attributes:
        model: The model instance that failed validation
        field: The field that failed validation
        message: Explanation of the error
    """

    def __init__(self, model: Any, field: str, message: str):
        self.model = model
        self.field = field
        self.message = message
        super().__init__(
            f"Validation error in {model.__class__.__name__}.{field}: {message}"
        )


class ContactValidationMixin:
    """
    Mixin validating the ``email`` and ``phone`` columns of merchants and customers.

    Only mix into models that declare both columns.
    """

    @validates("email")
    def validate_email(self, key: str, email: Optional[str]) -> Optional[str]:
        """
        Validate email format.

        Raises:
            ModelValidationError: If email format is invalid
        """
        if email is not None:
            email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
            if not re.match(email_pattern, email):
                raise ModelValidationError(self, key, "Invalid email format")
            email = email.lower()
        return email

    @validates("phone")
    def validate_phone(self, key: str, phone: Optional[str]) -> Optional[str]:
        """
        Validate phone number format.

        Raises:
            ModelValidationError: If phone format is invalid
        """
        if phone is not None:
            # Remove all non-numeric characters for validation
            digits_only = re.sub(r"\D", "", phone)
            if not (7 <= len(digits_only) <= 15):
                raise ModelValidationError(
                    self, key, "Phone number must have 7-15 digits"
                )
        return phone


class TimestampMixin:
    """
    Mixin providing automatic timestamp functionality.

    Adds created_at and updated_at timestamps that are automatically
    maintained when records are created or updated.
    """

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class AbstractBase(Base):
    """
    Abstract base class for all model entities.

    Attributes:
        id: Primary key ID (auto-incremented)
        uuid: Unique identifier (UUID) for the record
        is_active: Soft "active" flag
    """

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, default=lambda: str(uuid.uuid4()))
    is_active = Column(Boolean, default=True, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the model instance to a dictionary.

        Returns:
            Dictionary representation of the model instance
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, PyEnum):
                value = value.value
            result[column.name] = value
        return result

