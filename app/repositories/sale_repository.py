# File: app/repositories/sale_repository.py

from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime

from sqlalchemy import select, func, or_, asc, desc
from sqlalchemy.orm import Session, selectinload

from app.db.models.enums import SaleStatus, SaleType
from app.db.models.sales import Sale, Payment, SETTLED_PAYMENT_STATUSES
from app.repositories.base_repository import BaseRepository

SORTABLE_FIELDS = ("created_at", "updated_at", "total", "sale_number", "status", "id")


class SaleRepository(BaseRepository[Sale]):
    """
    Repository for Sale entity operations.

    Sales are loaded together with their line items and payments since every
    service operation reads or rewrites them as a whole.
    """

    model = Sale

    def __init__(self, session: Session):
        super().__init__(session, Sale)

    def _select_sale(self):
        return select(Sale).options(
            selectinload(Sale.line_items), selectinload(Sale.payments)
        )

    def get_by_id(self, id: int) -> Optional[Sale]:
        stmt = self._select_sale().where(Sale.id == id)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_sale_number(self, sale_number: str) -> Optional[Sale]:
        stmt = self._select_sale().where(Sale.sale_number == sale_number)
        return self.session.execute(stmt).scalar_one_or_none()

    def search(
        self,
        filters: Dict[str, Any],
        skip: int = 0,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Sale], int]:
        """
        Filter sales and return one page plus the total match count.

        Args:
            filters: merchant_id, customer_id, customer_code, location_id,
                type, status, start_date, end_date (None values are ignored)
            skip: Number of records to skip
            limit: Maximum number of records to return
            sort_by: Column to sort by (falls back to created_at)
            sort_order: "asc" or "desc"

        Returns:
            Tuple of (sales on the page, total matching count)
        """
        conditions = []
        for key in ("merchant_id", "location_id", "type", "status"):
            if filters.get(key) is not None:
                conditions.append(getattr(Sale, key) == filters[key])

        customer_id = filters.get("customer_id")
        customer_code = filters.get("customer_code")
        if customer_id is not None and customer_code:
            conditions.append(
                or_(Sale.customer_id == customer_id, Sale.customer_code == customer_code)
            )
        elif customer_id is not None:
            conditions.append(Sale.customer_id == customer_id)
        elif customer_code:
            conditions.append(Sale.customer_code == customer_code)

        if filters.get("start_date") is not None:
            conditions.append(Sale.created_at >= filters["start_date"])
        if filters.get("end_date") is not None:
            conditions.append(Sale.created_at <= filters["end_date"])

        count_stmt = select(func.count(Sale.id)).where(*conditions)
        total = self.session.execute(count_stmt).scalar_one()

        sort_column = getattr(Sale, sort_by if sort_by in SORTABLE_FIELDS else "created_at")
        ordering = asc(sort_column) if sort_order == "asc" else desc(sort_column)
        stmt = (
            self._select_sale()
            .where(*conditions)
            .order_by(ordering, desc(Sale.id))
            .offset(skip)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all()), total

    def find_eligible_returns(
        self,
        merchant_id: int,
        since: datetime,
        customer_id: Optional[int] = None,
        customer_code: Optional[str] = None,
    ) -> List[Sale]:
        """
        Completed purchases of a merchant's customer created on or after ``since``.
        """
        customer_conditions = []
        if customer_id is not None:
            customer_conditions.append(Sale.customer_id == customer_id)
        if customer_code:
            customer_conditions.append(Sale.customer_code == customer_code)

        stmt = (
            self._select_sale()
            .where(
                Sale.merchant_id == merchant_id,
                Sale.type == SaleType.PURCHASE,
                Sale.status == SaleStatus.COMPLETED,
                Sale.created_at >= since,
                or_(*customer_conditions),
            )
            .order_by(desc(Sale.created_at))
        )
        return list(self.session.execute(stmt).scalars().all())

    def find_returns_for(self, original_sale_id: int) -> List[Sale]:
        stmt = (
            self._select_sale()
            .where(Sale.original_sale_id == original_sale_id)
            .order_by(asc(Sale.id))
        )
        return list(self.session.execute(stmt).scalars().all())

    def summarize(
        self,
        merchant_id: int,
        statuses: Tuple[SaleStatus, ...],
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        location_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Aggregate a merchant's sales per type and settled payments per method.

        Only sales in ``statuses`` are counted. Payment sums are signed, so
        refunds paid out reduce their method's figure.

        Returns:
            Dictionary with ``by_type`` ({SaleType: (count, total)}) and
            ``by_method`` ({PaymentMethod: amount})
        """
        conditions = [Sale.merchant_id == merchant_id, Sale.status.in_(statuses)]
        if location_id is not None:
            conditions.append(Sale.location_id == location_id)
        if start_date is not None:
            conditions.append(Sale.created_at >= start_date)
        if end_date is not None:
            conditions.append(Sale.created_at <= end_date)

        type_stmt = (
            select(Sale.type, func.count(Sale.id), func.sum(Sale.total))
            .where(*conditions)
            .group_by(Sale.type)
        )
        by_type = {
            sale_type: (count, total)
            for sale_type, count, total in self.session.execute(type_stmt).all()
        }

        method_stmt = (
            select(Payment.method, func.sum(Payment.amount))
            .join(Sale, Payment.sale_id == Sale.id)
            .where(*conditions, Payment.status.in_(list(SETTLED_PAYMENT_STATUSES)))
            .group_by(Payment.method)
        )
        by_method = {
            method: amount for method, amount in self.session.execute(method_stmt).all()
        }
        return {"by_type": by_type, "by_method": by_method}
