# File: app/core/events.py

from typing import Dict, Any, Callable, List, Optional, Union, TypeVar, Type
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, date
from decimal import Decimal
import inspect
import logging
import uuid

from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Type definitions
T_event = TypeVar("T_event", bound="DomainEvent")
EventHandler = Callable[[T_event], None]


# --- Base DomainEvent ---
@dataclass(eq=False)
class DomainEvent:
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["event_type"] = self.__class__.__name__

        for key, value in result.items():
            if isinstance(value, (datetime, date)):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
        return result


# --- Sale Lifecycle Event Definitions ---
@dataclass(eq=False)
class SaleInitiated(DomainEvent):
    sale_id: int = 0
    sale_number: str = ""
    merchant_id: int = 0
    sale_type: str = "purchase"
    total: Decimal = Decimal("0")
    principal_id: Optional[int] = None


@dataclass(eq=False)
class SaleUpdated(DomainEvent):
    sale_id: int = 0
    changes: Dict[str, Any] = field(default_factory=dict)
    principal_id: Optional[int] = None


@dataclass(eq=False)
class PaymentApplied(DomainEvent):
    sale_id: int = 0
    payment_id: int = 0
    method: str = ""
    amount: Decimal = Decimal("0")
    status: str = ""
    principal_id: Optional[int] = None


@dataclass(eq=False)
class SaleCompleted(DomainEvent):
    sale_id: int = 0
    total: Decimal = Decimal("0")
    amount_paid: Decimal = Decimal("0")


@dataclass(eq=False)
class SaleVoided(DomainEvent):
    sale_id: int = 0
    reason: Optional[str] = None
    principal_id: Optional[int] = None


@dataclass(eq=False)
class ReturnInitiated(DomainEvent):
    return_sale_id: int = 0
    original_sale_id: int = 0
    total: Decimal = Decimal("0")
    principal_id: Optional[int] = None


@dataclass(eq=False)
class RefundProcessed(DomainEvent):
    return_sale_id: int = 0
    original_sale_id: Optional[int] = None
    amount: Decimal = Decimal("0")
    refund_id: str = ""
    via_gateway: bool = False
    principal_id: Optional[int] = None


# --- Event Bus Class ---
class EventBus:
    """
    Synchronous event bus for domain events.

    One bus is created per application (see ``app.main.create_app``) and is
    handed to services through their constructors.

    Usage:
        bus.subscribe(SaleCompleted, handle_sale_completed)
        bus.publish(SaleCompleted(sale_id=123))
    """

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = defaultdict(list)

    def publish(self, event: DomainEvent) -> None:
        """
        Publish an event to all registered handlers.

        Args:
            event: The domain event to publish

        Note:
            - Coroutine handlers are skipped with a warning
            - All handler exceptions are caught and logged
        """
        event_type = type(event).__name__
        logger.debug(f"Publishing event {event_type} ID {event.event_id}")
        subscribers_copy = list(self.subscribers.get(event_type, []))
        for handler in subscribers_copy:
            self._call_handler(handler, event, event_type)

    def _call_handler(self, handler: Callable, event: DomainEvent, event_type: str):
        """Run one handler, logging its failure instead of propagating it."""
        try:
            if inspect.iscoroutinefunction(handler):
                logger.warning(f"Skipping coroutine handler {handler.__name__} for {event_type}")
            else:
                handler(event)
        except Exception as e:
            logger.error(f"Error in handler {handler.__name__} for {event_type} ID {event.event_id}: {e}",
                         exc_info=True)

    def subscribe(self, event_type: Union[str, Type[DomainEvent]], handler: EventHandler) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event class or event type name string
            handler: Callable to handle the event
        """
        event_type_name = event_type.__name__ if isinstance(event_type, type) else str(event_type)
        self.subscribers[event_type_name].append(handler)
        logger.debug(f"Subscribed handler {getattr(handler, '__name__', repr(handler))} to {event_type_name}")

    def clear_subscriptions(self) -> None:
        """Clear all event subscriptions."""
        self.subscribers.clear()
        logger.debug("Cleared all event subscriptions")


def log_sale_event(event: DomainEvent) -> None:
    """Audit-log handler attached to every sale lifecycle event."""
    logger.info(f"Sale event {type(event).__name__}", extra={"event": event.to_dict()})


SALE_EVENT_TYPES = (
    SaleInitiated,
    SaleUpdated,
    PaymentApplied,
    SaleCompleted,
    SaleVoided,
    ReturnInitiated,
    RefundProcessed,
)


# --- FastAPI Event Handlers Setup ---
def setup_event_handlers(app: FastAPI, event_bus: EventBus) -> None:
    """
    Set up FastAPI lifecycle event handlers and the default audit subscribers.

    Args:
        app: FastAPI application instance
        event_bus: The application's event bus
    """
    for event_type in SALE_EVENT_TYPES:
        event_bus.subscribe(event_type, log_sale_event)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Application starting up")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Application shutting down")
        event_bus.clear_subscriptions()
