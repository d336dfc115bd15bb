# File: app/schemas/__init__.py
"""
Schemas package for the Receets API.

Pydantic models used for request validation and response serialization.
"""

from .token import TokenPayload
from .sale import (
    LineItemCreate,
    PromoCode,
    SaleInitiate,
    SaleUpdate,
    ReturnCreate,
    SaleVoid,
    LineItemResponse,
    PaymentResponse,
    SaleResponse,
    Pagination,
    SaleListResponse,
    EligibleReturnsResponse,
    ReceiptResponse,
    SalesAnalytics,
)
from .payment import (
    PaymentCreate,
    GatewayPaymentRequest,
    CashPaymentRequest,
    CardPaymentRequest,
    GatewayConfirmRequest,
    RefundRequest,
    PaymentResult,
    RefundInfo,
    RefundResult,
)
from .location import (
    QRCodeIssue,
    QRCodeData,
    QRCodeResponse,
    QRCodeValidate,
    QRCodeValidation,
)

__all__ = [
    # Authentication
    "TokenPayload",

    # Sales
    "LineItemCreate", "PromoCode", "SaleInitiate", "SaleUpdate", "ReturnCreate",
    "SaleVoid", "LineItemResponse", "PaymentResponse", "SaleResponse",
    "Pagination", "SaleListResponse", "EligibleReturnsResponse", "ReceiptResponse",
    "SalesAnalytics",

    # Payments and refunds
    "PaymentCreate", "GatewayPaymentRequest", "CashPaymentRequest", "CardPaymentRequest",
    "GatewayConfirmRequest", "RefundRequest", "PaymentResult", "RefundInfo", "RefundResult",

    # Location QR codes
    "QRCodeIssue", "QRCodeData", "QRCodeResponse", "QRCodeValidate", "QRCodeValidation",
]
