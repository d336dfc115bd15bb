# File: app/repositories/base_repository.py

from typing import Generic, TypeVar, Optional, Type
from sqlalchemy.orm import Session
from sqlalchemy import select

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Base repository class providing common persistence operations for all
    entities using SQLAlchemy select() syntax.

    Repositories never commit: writes are flushed so generated keys and
    constraint violations surface immediately, and the service owning the
    unit of work commits or rolls back (see ``BaseService.transaction``).

    Attributes:
        session (Session): The SQLAlchemy session for database operations
        model (Type[T]): The SQLAlchemy model class this repository manages
    """

    model: Optional[Type[T]] = None

    def __init__(self, session: Session, model: Optional[Type[T]] = None):
        """
        Initialize the repository with a database session and the specific model.

        Args:
            session (Session): SQLAlchemy database session
            model (Type[T]): The SQLAlchemy model class; subclasses set it as a class attribute
        """
        self.session = session
        if model is not None:
            self.model = model

    def _get_model(self) -> Type[T]:
        """Ensures the model is set before use."""
        if self.model is None:
            raise TypeError(f"Repository model is not set for {self.__class__.__name__}")
        return self.model

    def get_by_id(self, id: int) -> Optional[T]:
        """
        Retrieve an entity by its primary key ID.

        Args:
            id (int): The primary key ID of the entity

        Returns:
            Optional[T]: The entity if found, None otherwise
        """
        model_class = self._get_model()
        stmt = select(model_class).where(getattr(model_class, "id") == id)
        return self.session.execute(stmt).scalar_one_or_none()

    def add(self, entity: T) -> T:
        """Add an already constructed entity (with its children) and flush."""
        self.session.add(entity)
        self.session.flush()
        return entity
