# File: app/repositories/customer_repository.py

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models.customer import Customer
from app.repositories.base_repository import BaseRepository


class CustomerRepository(BaseRepository[Customer]):
    """
    Repository for Customer entity operations.

    Customers are resolved at checkout either by ID or by the customer code
    shown in the customer app.
    """

    model = Customer

    def __init__(self, session: Session):
        super().__init__(session, Customer)

    def find_by_code(self, customer_code: str) -> Optional[Customer]:
        stmt = select(Customer).where(Customer.customer_code == customer_code)
        return self.session.execute(stmt).scalar_one_or_none()

    def resolve(
        self, customer_id: Optional[int] = None, customer_code: Optional[str] = None
    ) -> Optional[Customer]:
        """Look a customer up by ID first, then by customer code."""
        if customer_id is not None:
            customer = self.get_by_id(customer_id)
            if customer:
                return customer
        if customer_code:
            return self.find_by_code(customer_code)
        return None
