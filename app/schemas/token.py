"""
Bearer token schemas for the Receets API.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    """
    Schema for the contents of a JWT access token.

    ``sub`` is the merchant or customer ID, depending on ``principal_type``.
    """

    sub: str = Field(..., description="Subject identifier (merchant or customer ID)")
    exp: int = Field(..., description="Token expiration timestamp")
    type: Optional[str] = Field(None, description="Token type")
    principal_type: Literal["merchant", "customer"] = Field(
        ..., description="Kind of principal the subject identifies"
    )
