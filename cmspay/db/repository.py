"""Base repository class with common CRUD operations."""

from typing import Any, Generic, List, Optional, Type, TypeVar
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cmspay.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository providing common operations for all models.

    Repositories flush but never commit; the surrounding UnitOfWork owns
    the transaction boundary.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def add(self, instance: ModelType) -> ModelType:
        """
        Add a new record (and any related records it carries).

        Args:
            instance: Transient model instance

        Returns:
            The same instance, flushed so its primary key is set
        """
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def get_by_field(self, field_name: str, value: Any) -> Optional[ModelType]:
        """
        Get a record by a specific field value.

        Args:
            field_name: Name of the field to search
            value: Value to search for

        Returns:
            Model instance or None if not found
        """
        field = getattr(self.model, field_name)
        result = await self.session.execute(select(self.model).where(field == value))
        return result.scalar_one_or_none()

    async def filter(self, **filters) -> List[ModelType]:
        """
        Filter records by field values.

        Supports comparison operators using double underscore syntax:
        - field__lt, field__lte, field__gt, field__gte, field__ne
        - field (no suffix): equal

        Examples:
            # Payments still being polled
            await repo.filter(poll_expiry__gte=now)
        """
        query = select(self.model)
        query = self._apply_filters(query, filters)

        result = await self.session.execute(query)
        return list(result.scalars().unique().all())

    def _apply_filters(self, query, filters: dict):
        """Apply ``field__op=value`` filters to a select query."""
        for filter_key, value in filters.items():
            if "__" in filter_key:
                field_name, operator = filter_key.rsplit("__", 1)
            else:
                field_name = filter_key
                operator = "eq"

            field = getattr(self.model, field_name)

            if operator == "eq":
                query = query.where(field == value)
            elif operator == "ne":
                query = query.where(field != value)
            elif operator == "lt":
                query = query.where(field < value)
            elif operator == "lte":
                query = query.where(field <= value)
            elif operator == "gt":
                query = query.where(field > value)
            elif operator == "gte":
                query = query.where(field >= value)
            else:
                raise ValueError(f"Unknown filter operator: {operator}")

        return query

    async def count(self, **filters) -> int:
        """Count records matching the given filters."""
        query = select(func.count(self.model.id))  # type: ignore
        query = self._apply_filters(query, filters)

        result = await self.session.execute(query)
        return result.scalar() or 0
