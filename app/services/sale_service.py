# File: app/services/sale_service.py

from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
import math

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.events import SaleInitiated, SaleUpdated, SaleCompleted, SaleVoided
from app.core.exceptions import (
    CustomerNotFoundException,
    LocationNotFoundException,
    MerchantNotFoundException,
    PermissionDeniedException,
    SaleNotFoundException,
    ValidationException,
)
from app.db.models.enums import PromoType, SaleStatus, SaleType
from app.db.models.sales import Sale, LineItem
from app.repositories.customer_repository import CustomerRepository
from app.repositories.merchant_repository import MerchantRepository, LocationRepository
from app.repositories.sale_repository import SaleRepository
from app.services.base_service import BaseService
from app.services.sale_state_machine import (
    ensure_editable,
    ensure_voidable,
    validate_status_transition,
)
from app.services.totals_calculator import (
    calculate_totals,
    format_money,
    recalculate,
    to_money,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# Sale statuses counted by analytics
ANALYTICS_STATUSES = (
    SaleStatus.COMPLETED,
    SaleStatus.PARTIALLY_REFUNDED,
    SaleStatus.REFUNDED,
)


class SaleService(BaseService[Sale]):
    """
    Service for managing sales at the point of sale.

    Provides functionality for:
    - Initiating and updating sales (totals always recalculated)
    - Merchant and customer sale listings
    - Voiding sales before payment
    - Receipt generation
    - Sales analytics per merchant
    - Finding purchases eligible for return
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[SaleRepository] = None,
        merchant_repository: Optional[MerchantRepository] = None,
        location_repository: Optional[LocationRepository] = None,
        customer_repository: Optional[CustomerRepository] = None,
        security_context=None,
        event_bus=None,
        receipt_url_prefix: Optional[str] = None,
        max_retries: Optional[int] = None,
    ):
        """
        Initialize SaleService with dependencies.

        Args:
            session: Database session for persistence operations
            repository: Optional sale repository override
            merchant_repository: Optional merchant repository override
            location_repository: Optional location repository override
            customer_repository: Optional customer repository override
            security_context: Optional security context for authorization
            event_bus: Optional event bus for publishing events
            receipt_url_prefix: Path prefix for receipt URLs
            max_retries: Attempts for a versioned write before giving up
        """
        super().__init__(
            session,
            repository=repository or SaleRepository(session),
            security_context=security_context,
            event_bus=event_bus,
            max_retries=max_retries,
        )
        self.merchant_repository = merchant_repository or MerchantRepository(session)
        self.location_repository = location_repository or LocationRepository(session)
        self.customer_repository = customer_repository or CustomerRepository(session)
        self.receipt_url_prefix = (receipt_url_prefix or settings.RECEIPT_URL_PREFIX).rstrip("/")

    def initiate_sale(self, data: Dict[str, Any]) -> Sale:
        """
        Create a new draft sale.

        Args:
            data: merchant_id, location_id, line_items and optional
                customer_id, customer_code, type, promo_code, notes,
                cashier_id, cashier_name

        Returns:
            Created sale entity

        Raises:
            ValidationException: If the input is invalid
            MerchantNotFoundException: If the merchant does not exist
            LocationNotFoundException: If the location is not the merchant's
            CustomerNotFoundException: If the given customer does not exist
        """
        merchant_id = data.get("merchant_id")
        if merchant_id is None and self.security_context and self.security_context.current_user:
            if self.security_context.current_user.is_merchant:
                merchant_id = self.security_context.current_user.id
        if merchant_id is None:
            raise ValidationException(
                "Merchant is required", {"merchant_id": ["Field required"]}
            )
        self._require_merchant(merchant_id)

        sale_type = SaleType(data.get("type") or SaleType.PURCHASE)
        if sale_type == SaleType.RETURN:
            raise ValidationException(
                "Return sales are created by processing a return",
                {"type": ["Use the returns endpoint for returns"]},
            )

        merchant = self.merchant_repository.get_by_id(merchant_id)
        if not merchant or not merchant.is_active:
            raise MerchantNotFoundException(merchant_id)

        location_id = data.get("location_id")
        if not self.location_repository.get_for_merchant(location_id, merchant_id):
            raise LocationNotFoundException(location_id, merchant_id)

        customer_id, customer_code = self._resolve_customer(
            data.get("customer_id"), data.get("customer_code")
        )

        sale = Sale(
            merchant_id=merchant_id,
            location_id=location_id,
            customer_id=customer_id,
            customer_code=customer_code,
            type=sale_type,
            status=SaleStatus.DRAFT,
            notes=data.get("notes"),
            cashier_id=data.get("cashier_id"),
            cashier_name=data.get("cashier_name"),
        )
        self._apply_promo(sale, data.get("promo_code"))
        self._replace_line_items(sale, data.get("line_items") or [])

        self._insert_with_reference(sale, "sale_number", "SALE")

        self._log_operation(
            "initiate", "Sale", sale.id, {"sale_number": sale.sale_number, "total": str(sale.total)}
        )
        self._publish(
            SaleInitiated(
                sale_id=sale.id,
                sale_number=sale.sale_number,
                merchant_id=sale.merchant_id,
                sale_type=sale.type.value,
                total=Decimal(sale.total),
                principal_id=self._current_principal_id(),
            )
        )
        return sale

    def update_sale(self, sale_id: int, data: Dict[str, Any]) -> Sale:
        """
        Update line items, promo code, notes, customer or status of a sale.

        Only keys present in ``data`` are applied. Totals are recalculated
        whenever line items or the promo code change.

        Raises:
            SaleNotFoundException: If the sale does not exist
            InvalidStateException: If the sale can no longer be edited or the
                requested status transition is not allowed
            ValidationException: If line items or the promo code are invalid
        """

        def write():
            sale = self._get_sale(sale_id)
            self._require_sale_access(sale, allow_customer=False)
            previous_status = sale.status
            changes: Dict[str, Any] = {}

            editing = any(
                key in data for key in ("line_items", "promo_code", "notes", "customer_id", "customer_code")
            )
            if editing:
                ensure_editable(sale)

            if "promo_code" in data:
                self._apply_promo(sale, data["promo_code"])
                changes["promo_code"] = sale.promo_code
            if "line_items" in data:
                self._replace_line_items(sale, data["line_items"] or [])
                changes["line_items"] = len(sale.line_items)
            elif "promo_code" in data:
                self._apply_totals(sale, recalculate(sale))

            if "notes" in data:
                sale.notes = data["notes"]
                changes["notes"] = data["notes"]

            if data.get("customer_id") is not None or data.get("customer_code"):
                sale.customer_id, sale.customer_code = self._resolve_customer(
                    data.get("customer_id"), data.get("customer_code")
                )
                changes["customer_id"] = sale.customer_id

            if data.get("status") is not None:
                sale.status = validate_status_transition(sale, data["status"])
                if sale.status != previous_status:
                    changes["status"] = sale.status.value

            self._touch(sale)
            self.session.flush()
            return sale, changes, previous_status

        sale, changes, previous_status = self.run_versioned(write, f"Update sale {sale_id}")

        if previous_status != sale.status:
            self._record_status_change(sale.id, previous_status, sale.status)
        self._publish(
            SaleUpdated(sale_id=sale.id, changes=changes, principal_id=self._current_principal_id())
        )
        if sale.status == SaleStatus.COMPLETED and previous_status != SaleStatus.COMPLETED:
            self._publish(
                SaleCompleted(sale_id=sale.id, total=Decimal(sale.total), amount_paid=sale.amount_paid)
            )
        return sale

    def get_sale(self, sale_id: int) -> Sale:
        """
        Get a sale visible to the current merchant or linked customer.

        Raises:
            SaleNotFoundException: If the sale does not exist
            PermissionDeniedException: If the principal may not see the sale
        """
        sale = self._get_sale(sale_id)
        self._require_sale_access(sale, allow_customer=True)
        return sale

    def list_merchant_sales(
        self,
        filters: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """
        List a merchant's sales with pagination.

        Args:
            filters: merchant_id (defaults to the current merchant), start_date,
                end_date, type, status, location_id, customer_id, customer_code
            page: 1-based page number
            limit: Page size
            sort_by: Column to sort by
            sort_order: "asc" or "desc"

        Returns:
            Dictionary with ``items`` and ``pagination`` (total, page, limit, pages)
        """
        filters = dict(filters)
        principal = self.security_context.current_user if self.security_context else None
        if filters.get("merchant_id") is None and principal is not None and principal.is_merchant:
            filters["merchant_id"] = principal.id
        if filters.get("merchant_id") is None:
            raise ValidationException("Merchant is required", {"merchant_id": ["Field required"]})
        self._require_merchant(filters["merchant_id"])

        allowed = (
            "merchant_id", "start_date", "end_date", "type", "status",
            "location_id", "customer_id", "customer_code",
        )
        return self._paginate({k: filters.get(k) for k in allowed}, page, limit, sort_by, sort_order)

    def list_customer_sales(
        self,
        filters: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """
        List a customer's sales with pagination.

        Filters: customer_id (defaults to the current customer), start_date,
        end_date, type, status, merchant_id.
        """
        filters = dict(filters)
        principal = self.security_context.current_user if self.security_context else None
        if filters.get("customer_id") is None and principal is not None and principal.is_customer:
            filters["customer_id"] = principal.id
        if filters.get("customer_id") is None:
            raise ValidationException("Customer is required", {"customer_id": ["Field required"]})
        if self.security_context is not None and not self.security_context.is_customer(filters["customer_id"]):
            raise PermissionDeniedException(
                "Not authorized to list these sales",
                resource_type="Customer",
                resource_id=filters["customer_id"],
            )

        allowed = ("customer_id", "start_date", "end_date", "type", "status", "merchant_id")
        return self._paginate({k: filters.get(k) for k in allowed}, page, limit, sort_by, sort_order)

    def void_sale(self, sale_id: int, reason: Optional[str] = None) -> Sale:
        """
        Void a sale that has not been paid.

        Raises:
            SaleNotFoundException: If the sale does not exist
            InvalidStateException: If the sale is completed with payments,
                already closed, or has a gateway payment in flight
        """

        def write():
            sale = self._get_sale(sale_id)
            self._require_sale_access(sale, allow_customer=False)
            ensure_voidable(sale)

            previous_status = sale.status
            sale.status = SaleStatus.VOIDED
            note = f"Voided: {reason or 'no reason given'}"
            sale.notes = f"{sale.notes}\n{note}" if sale.notes else note
            self._touch(sale)
            self.session.flush()
            return sale, previous_status

        sale, previous_status = self.run_versioned(write, f"Void sale {sale_id}")

        self._record_status_change(sale.id, previous_status, sale.status)
        self._publish(
            SaleVoided(sale_id=sale.id, reason=reason, principal_id=self._current_principal_id())
        )
        return sale

    def generate_receipt(self, sale_id: int) -> Dict[str, Any]:
        """
        Build receipt data for a sale and assign its receipt URL on first use.

        Returns:
            Dictionary with ``receipt`` and ``receipt_url``
        """
        sale = self.get_sale(sale_id)

        if not sale.receipt_url:

            def assign_url():
                fresh = self._get_sale(sale_id)
                if not fresh.receipt_url:
                    fresh.receipt_url = f"{self.receipt_url_prefix}/{fresh.uuid}"
                    self._touch(fresh)
                    self.session.flush()
                return fresh

            sale = self.run_versioned(assign_url, f"Receipt URL for sale {sale_id}")
            logger.info(f"Assigned receipt URL {sale.receipt_url} to sale {sale.id}")

        return {"receipt": self._build_receipt(sale), "receipt_url": sale.receipt_url}

    def get_sales_analytics(
        self,
        merchant_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        location_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Summarize a merchant's purchases, returns and tenders over a period.

        Purchases count once completed, including those refunded since, so
        refunds are only subtracted through their returns. Voided, draft and
        in-progress sales are left out.

        Args:
            merchant_id: Merchant to summarize (defaults to the current merchant)
            start_date: Created on or after
            end_date: Created on or before
            location_id: Restrict to one of the merchant's locations

        Returns:
            Dictionary with total_sales, total_returns, sales_revenue,
            returns_amount, net_revenue and payment_methods

        Raises:
            ValidationException: If no merchant is given or the range is inverted
            LocationNotFoundException: If the location is not the merchant's
        """
        principal = self.security_context.current_user if self.security_context else None
        if merchant_id is None and principal is not None and principal.is_merchant:
            merchant_id = principal.id
        if merchant_id is None:
            raise ValidationException("Merchant is required", {"merchant_id": ["Field required"]})
        self._require_merchant(merchant_id)

        if start_date is not None and end_date is not None and start_date > end_date:
            raise ValidationException(
                "Start date must be before end date",
                {"start_date": ["Must be on or before end_date"]},
            )
        if location_id is not None and not self.location_repository.get_for_merchant(
            location_id, merchant_id
        ):
            raise LocationNotFoundException(location_id, merchant_id)

        summary = self.repository.summarize(
            merchant_id,
            ANALYTICS_STATUSES,
            start_date=start_date,
            end_date=end_date,
            location_id=location_id,
        )
        purchase_count, purchase_total = summary["by_type"].get(SaleType.PURCHASE, (0, None))
        return_count, return_total = summary["by_type"].get(SaleType.RETURN, (0, None))

        sales_revenue = to_money(purchase_total)
        returns_amount = abs(to_money(return_total))
        logger.debug(
            f"Analytics for merchant {merchant_id}: {purchase_count} sales, {return_count} returns",
            extra={"merchant_id": merchant_id, "location_id": location_id},
        )
        return {
            "total_sales": purchase_count,
            "total_returns": return_count,
            "sales_revenue": sales_revenue,
            "returns_amount": returns_amount,
            "net_revenue": sales_revenue - returns_amount,
            "payment_methods": {
                method.value: to_money(amount)
                for method, amount in sorted(
                    summary["by_method"].items(), key=lambda item: item[0].value
                )
            },
        }

    def get_eligible_returns(
        self,
        merchant_id: int,
        customer_id: Optional[int] = None,
        customer_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Completed purchases of a customer still inside the merchant's return period.

        Raises:
            ValidationException: If neither customer ID nor customer code is given
            MerchantNotFoundException: If the merchant does not exist
        """
        if customer_id is None and not customer_code:
            raise ValidationException(
                "Customer ID or code is required",
                {"customer_id": ["Customer ID or customer code is required"]},
            )
        self._require_merchant(merchant_id)

        merchant = self.merchant_repository.get_by_id(merchant_id)
        if not merchant:
            raise MerchantNotFoundException(merchant_id)

        return_period = merchant.return_period or settings.DEFAULT_RETURN_PERIOD_DAYS
        since = datetime.now(timezone.utc) - timedelta(days=return_period)
        sales = self.repository.find_eligible_returns(
            merchant_id, since, customer_id=customer_id, customer_code=customer_code
        )
        return {"return_period": return_period, "sales": sales}

    # --- Helpers ---

    def _get_sale(self, sale_id: int) -> Sale:
        sale = self.repository.get_by_id(sale_id)
        if not sale:
            raise SaleNotFoundException(sale_id)
        return sale

    def _resolve_customer(
        self, customer_id: Optional[int], customer_code: Optional[str]
    ) -> Tuple[Optional[int], Optional[str]]:
        if customer_id is None and not customer_code:
            return None, None
        customer = self.customer_repository.resolve(customer_id, customer_code)
        if customer is None or not customer.is_active:
            raise CustomerNotFoundException(customer_id if customer_id is not None else customer_code)
        return customer.id, customer.customer_code

    @staticmethod
    def _apply_promo(sale: Sale, promo: Optional[Any]) -> None:
        if not promo:
            sale.promo_code = None
            sale.promo_discount = None
            sale.promo_type = None
            return
        get = promo.get if isinstance(promo, dict) else lambda key: getattr(promo, key, None)
        if not get("code"):
            raise ValidationException("Promo code is required", {"promo_code.code": ["Field required"]})
        sale.promo_code = get("code")
        sale.promo_discount = to_money(get("discount"))
        sale.promo_type = PromoType(get("type") or PromoType.FIXED)

    def _replace_line_items(self, sale: Sale, line_items: List[Any]) -> None:
        totals = calculate_totals(line_items, sale.type, sale.promo)
        sale.line_items.clear()
        for line in totals.line_items:
            sale.line_items.append(LineItem(**line.to_dict()))
        self._apply_totals(sale, totals)

    @staticmethod
    def _apply_totals(sale: Sale, totals) -> None:
        for name, value in totals.as_columns().items():
            setattr(sale, name, value)

    def _paginate(
        self, filters: Dict[str, Any], page: int, limit: int, sort_by: str, sort_order: str
    ) -> Dict[str, Any]:
        if page < 1:
            raise ValidationException("Page must be at least 1", {"page": ["Must be >= 1"]})
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationException(
                f"Limit must be between 1 and {MAX_PAGE_SIZE}",
                {"limit": [f"Must be between 1 and {MAX_PAGE_SIZE}"]},
            )
        items, total = self.repository.search(
            filters, skip=(page - 1) * limit, limit=limit, sort_by=sort_by, sort_order=sort_order
        )
        return {
            "items": items,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit),
            },
        }

    def _build_receipt(self, sale: Sale) -> Dict[str, Any]:
        merchant = sale.merchant
        location = sale.location
        customer = sale.customer

        return {
            "sale_number": sale.sale_number,
            "date": sale.created_at,
            "merchant": {
                "name": merchant.business_name,
                "email": merchant.email,
                "location": {"name": location.name, "address": location.address_line}
                if location
                else None,
            },
            "customer": {
                "name": customer.full_name,
                "email": customer.email,
                "customer_code": customer.customer_code,
            }
            if customer
            else None,
            "type": sale.type.value,
            "status": sale.status.value,
            "line_items": [
                {
                    "product_id": line.product_id,
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "discount": line.discount,
                    "tax": line.tax,
                    "total": line.total,
                    "display_total": format_money(line.total),
                }
                for line in sale.line_items
            ],
            "subtotal": sale.subtotal,
            "tax_total": sale.tax_total,
            "discount_total": sale.discount_total,
            "total": sale.total,
            "display": {
                "subtotal": format_money(sale.subtotal),
                "tax_total": format_money(sale.tax_total),
                "discount_total": format_money(sale.discount_total),
                "total": format_money(sale.total),
            },
            "payments": [
                {
                    "method": payment.method.value,
                    "amount": payment.amount,
                    "display_amount": format_money(payment.amount),
                    "status": payment.status.value,
                    "transaction_id": payment.transaction_id,
                    "card_brand": payment.card_brand,
                    "last4": payment.last4,
                }
                for payment in sale.payments
            ],
            "promo_code": {
                "code": sale.promo_code,
                "discount": sale.promo_discount,
                "type": sale.promo_type.value if sale.promo_type else None,
            }
            if sale.promo_code
            else None,
            "cashier": {"id": sale.cashier_id, "name": sale.cashier_name},
        }

    def _record_status_change(
        self, sale_id: int, previous_status: SaleStatus, new_status: SaleStatus
    ) -> None:
        """
        Log a status change for a sale.

        Args:
            sale_id: ID of the sale
            previous_status: Previous status
            new_status: New status
        """
        user_id = self._current_principal_id()
        logger.info(
            f"Sale {sale_id} status changed from {previous_status.value} to {new_status.value} by principal {user_id}",
            extra={
                "sale_id": sale_id,
                "previous_status": previous_status.value,
                "new_status": new_status.value,
                "principal_id": user_id,
            },
        )
