"""
Base repository with common CRUD operations.

Provides a generic base class for all repositories to reduce code duplication.
"""
from typing import TypeVar, Generic, Optional, List, Type
from abc import ABC

from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from database.base import Base

# Type variable for model classes
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(ABC, Generic[ModelType]):
    """
    Abstract base repository with common CRUD operations.

    Provides:
    - get_by_id: Get single entity by ID
    - get_all: Get all entities with optional limit
    - count: Count all entities
    - add / flush / refresh: session helpers
    - upsert_statement: dialect-specific INSERT .. ON CONFLICT builder

    Usage:
        class PaymentRepository(BaseRepository[Payment]):
            model_class = Payment

            async def get_by_reference(self, reference: str):
                # Custom method
                ...

    Repositories only flush; committing is left to the calling service.
    """

    model_class: Type[ModelType]

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, entity_id: int) -> Optional[ModelType]:
        """
        Get entity by its primary key ID.

        Args:
            entity_id: Primary key ID

        Returns:
            Entity or None if not found
        """
        result = await self.session.execute(
            select(self.model_class).where(self.model_class.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_all(self, limit: Optional[int] = None) -> List[ModelType]:
        """
        Get all entities.

        Args:
            limit: Optional maximum number of results

        Returns:
            List of entities
        """
        query = select(self.model_class)
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self) -> int:
        """Count all entities."""
        result = await self.session.execute(
            select(func.count(self.model_class.id))
        )
        return result.scalar() or 0

    def add(self, entity: ModelType) -> None:
        """Add entity to session (for create operations)."""
        self.session.add(entity)

    async def flush(self) -> None:
        """Flush session changes to database."""
        await self.session.flush()

    async def refresh(self, entity: ModelType) -> ModelType:
        """Refresh entity from database."""
        await self.session.refresh(entity)
        return entity

    def upsert_statement(self):
        """
        INSERT builder that supports ``on_conflict_do_update``/``_do_nothing``.

        PostgreSQL in production, SQLite in tests; both share the same API.
        """
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert(self.model_class)
        return postgresql.insert(self.model_class)
