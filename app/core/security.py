# File: app/core/security.py
"""
Security utilities for Receets.

This module provides token generation and decoding, and the principal /
security context objects handed to services. Credential checks (passwords)
happen in an external verifier; only the bearer token is consumed here.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError
from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import UnauthorizedException
from app.schemas.token import TokenPayload

# Get JWT settings from config
ALGORITHM = settings.JWT_ALGORITHM

MERCHANT = "merchant"
CUSTOMER = "customer"
PRINCIPAL_TYPES = (MERCHANT, CUSTOMER)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: a merchant or a customer."""

    type: str
    id: int

    @property
    def is_merchant(self) -> bool:
        return self.type == MERCHANT

    @property
    def is_customer(self) -> bool:
        return self.type == CUSTOMER


class SecurityContext:
    """
    Carries the current principal into services.

    Services read ``current_user`` for audit logging and use the ownership
    helpers for authorization.
    """

    def __init__(self, principal: Optional[Principal] = None):
        self.current_user = principal

    @property
    def principal_id(self) -> Optional[int]:
        return self.current_user.id if self.current_user else None

    def is_merchant(self, merchant_id: Optional[int]) -> bool:
        return bool(
            self.current_user
            and self.current_user.is_merchant
            and merchant_id is not None
            and self.current_user.id == merchant_id
        )

    def is_customer(self, customer_id: Optional[int]) -> bool:
        return bool(
            self.current_user
            and self.current_user.is_customer
            and customer_id is not None
            and self.current_user.id == customer_id
        )


def create_access_token(
    principal_type: str,
    subject: Any,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token for a merchant or customer.

    Args:
        principal_type: "merchant" or "customer"
        subject: Token subject (merchant or customer ID)
        expires_delta: Optional token expiration time

    Returns:
        str: JWT access token
    """
    if principal_type not in PRINCIPAL_TYPES:
        raise ValueError(f"Unknown principal type: {principal_type}")

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode = {
        "exp": expire,
        "sub": str(subject),
        "type": "access",
        "principal_type": principal_type,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Principal:
    """
    Decode a bearer token into a Principal.

    Raises:
        UnauthorizedException: If the token is invalid, expired or malformed
    """
    try:
        payload: Dict[str, Any] = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[ALGORITHM]
        )
        token_data = TokenPayload.model_validate(payload)
    except JWTError as e:
        raise UnauthorizedException(f"Could not validate credentials: {e}") from e
    except ValidationError as e:
        raise UnauthorizedException("Token payload is malformed") from e

    if token_data.type not in (None, "access"):
        raise UnauthorizedException("Not an access token")

    try:
        principal_id = int(token_data.sub)
    except ValueError as e:
        raise UnauthorizedException("Token subject is not a valid ID") from e

    return Principal(type=token_data.principal_type, id=principal_id)
