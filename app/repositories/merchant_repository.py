# File: app/repositories/merchant_repository.py

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from app.db.models.merchant import Merchant, Location
from app.repositories.base_repository import BaseRepository


class MerchantRepository(BaseRepository[Merchant]):
    """Repository for Merchant lookups."""

    model = Merchant

    def __init__(self, session: Session):
        super().__init__(session, Merchant)


class LocationRepository(BaseRepository[Location]):
    """Repository for merchant store locations."""

    model = Location

    def __init__(self, session: Session):
        super().__init__(session, Location)

    def get_for_merchant(self, location_id: int, merchant_id: int) -> Optional[Location]:
        """Return the location only when it belongs to ``merchant_id``."""
        stmt = select(Location).where(
            Location.id == location_id, Location.merchant_id == merchant_id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_qr_code(self, code: str) -> Optional[Location]:
        stmt = (
            select(Location)
            .options(joinedload(Location.merchant))
            .where(Location.qr_code == code)
        )
        return self.session.execute(stmt).scalar_one_or_none()
