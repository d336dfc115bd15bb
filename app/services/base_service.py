# File: app/services/base_service.py

from typing import TypeVar, Generic, Optional, Dict, Any, Callable
from contextlib import contextmanager
from datetime import datetime, timezone
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.events import DomainEvent
from app.core.exceptions import (
    ReceetsException,
    ConcurrentModificationException,
    DuplicateEntityException,
    PermissionDeniedException,
    ValidationException,
)
from app.core.utils import generate_reference
from app.db.models.base import ModelValidationError
from app.repositories.base_repository import BaseRepository

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)


class BaseService(Generic[T]):
    """
    Base service for all Receets services.

    Provides common functionality including:
    - Transaction management
    - Optimistic-concurrency retries
    - Error handling and standardization
    - Logging
    - Event publishing
    """

    def __init__(
            self,
            session: Session,
            repository: Optional[BaseRepository] = None,
            security_context=None,
            event_bus=None,
            max_retries: Optional[int] = None,
    ):
        """
        Initialize service with dependencies.

        Args:
            session: Database session for persistence operations
            repository: Repository instance for the service's aggregate
            security_context: Security context carrying the current principal
            event_bus: Optional event bus for publishing domain events
            max_retries: Attempts for a versioned write before giving up
        """
        self.session = session
        self.repository = repository
        self.security_context = security_context
        self.event_bus = event_bus
        self.max_retries = max_retries or settings.SALE_WRITE_MAX_RETRIES

    @contextmanager
    def transaction(self):
        """
        Provide a transactional scope around operations.

        Yields:
            None

        Raises:
            ReceetsException: Transformed database errors or domain errors
            Exception: Any other exception that occurs during transaction execution
        """
        try:
            yield
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            if isinstance(e, ReceetsException):
                logger.info(f"Transaction rolled back: {e.message}")
                raise

            # Transform database errors to domain exceptions if needed
            transformed = self._transform_error(e)
            if transformed:
                logger.warning(f"Transaction failed: {transformed.message}")
                raise transformed from e

            logger.error(f"Transaction failed: {str(e)}", exc_info=True)
            raise

    def run_versioned(self, operation: Callable[[], R], description: str) -> R:
        """
        Run ``operation`` in a transaction, retrying on stale-version conflicts.

        ``operation`` must re-read everything it validates; a rollback expires
        all loaded state so each attempt sees the current rows.

        Raises:
            ConcurrentModificationException: When every attempt lost the race
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.transaction():
                    return operation()
            except ConcurrentModificationException:
                if attempt >= self.max_retries:
                    logger.warning(
                        f"{description}: giving up after {attempt} conflicting attempts"
                    )
                    raise
                logger.info(f"{description}: concurrent modification, retry {attempt}")

    def _insert_with_reference(self, entity, field: str, prefix: str, attempts: int = 3):
        """
        Insert ``entity`` with a freshly generated ``prefix`` reference in ``field``.

        A colliding reference is regenerated; the unique constraint decides.

        Raises:
            DuplicateEntityException: If every attempt collided
        """
        for attempt in range(1, attempts + 1):
            setattr(entity, field, generate_reference(prefix))
            try:
                with self.transaction():
                    self.repository.add(entity)
                return entity
            except DuplicateEntityException:
                if attempt >= attempts:
                    raise
                logger.info(f"{prefix} reference collision, regenerating (attempt {attempt})")

    def _current_principal_id(self) -> Optional[int]:
        if self.security_context and getattr(self.security_context, "current_user", None):
            return self.security_context.current_user.id
        return None

    def _require_merchant(self, merchant_id: Optional[int], resource_type: str = "Merchant",
                          resource_id: Any = None) -> None:
        """
        Require the current principal to be the owning merchant.

        Calls without a security context run with system privileges.

        Raises:
            PermissionDeniedException: If the principal is not the merchant
        """
        if self.security_context is None:
            return
        if not self.security_context.is_merchant(merchant_id):
            raise PermissionDeniedException(
                f"Not authorized to access this {resource_type.lower()}",
                resource_type=resource_type,
                resource_id=resource_id if resource_id is not None else merchant_id,
            )

    def _require_sale_access(self, sale, allow_customer: bool = True) -> None:
        """
        Require the principal to own the sale's merchant or, when allowed,
        to be the sale's linked customer.
        """
        if self.security_context is None:
            return
        if self.security_context.is_merchant(sale.merchant_id):
            return
        if allow_customer and self.security_context.is_customer(sale.customer_id):
            return
        raise PermissionDeniedException(
            "Not authorized to access this sale", resource_type="Sale", resource_id=sale.id
        )

    @staticmethod
    def _touch(entity) -> None:
        """Mark a versioned row as changed so its version check is always emitted."""
        entity.updated_at = datetime.now(timezone.utc)

    def _publish(self, event: DomainEvent) -> None:
        """Publish an event if an event bus exists."""
        if self.event_bus:
            self.event_bus.publish(event)

    def _log_operation(
            self,
            operation: str,
            entity_type: str,
            entity_id: Any = None,
            details: Dict[str, Any] = None,
    ) -> None:
        """
        Log an operation for auditing purposes.

        Args:
            operation: Operation name (create, update, void, etc.)
            entity_type: Type of entity being operated on
            entity_id: Optional entity ID
            details: Optional operation details
        """
        log_data = {
            "operation": operation,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "principal_id": self._current_principal_id(),
            "timestamp": datetime.now().isoformat(),
            "details": details,
        }

        logger.info(f"{operation.upper()} {entity_type} {entity_id}", extra=log_data)

    def _transform_error(self, error: Exception) -> Optional[ReceetsException]:
        """
        Transform database exceptions to domain exceptions.

        Args:
            error: The original exception

        Returns:
            Transformed domain exception, or None to re-raise original
        """
        if isinstance(error, StaleDataError):
            return ConcurrentModificationException(
                "The record was modified by another request"
            )
        if isinstance(error, IntegrityError):
            message = str(error.orig).lower() if error.orig is not None else str(error).lower()
            if "unique" in message or "duplicate" in message:
                return DuplicateEntityException(
                    "A record with the same unique key already exists",
                    {"constraint_error": str(error.orig)},
                )
        if isinstance(error, ModelValidationError):
            return ValidationException(error.message, {error.field: [error.message]})
        return None
