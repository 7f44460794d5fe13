"""User, Student and Cart repositories."""
from typing import Optional

from sqlalchemy import select, update, func

from database.models import User, UserType, Student, Cart
from database.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User model operations."""

    model_class = User

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get user by e-mail (case-insensitive)."""
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        email: str,
        full_name: Optional[str] = None,
        user_type: UserType = UserType.STUDENT,
        referral_code: Optional[str] = None,
    ) -> User:
        """Create new user."""
        user = User(
            email=email.strip().lower(),
            full_name=full_name,
            user_type=user_type.value,
            referral_code=referral_code,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_all_by_type(self, user_type: UserType) -> list[User]:
        """Users of one type, newest first."""
        result = await self.session.execute(
            select(User).where(User.user_type == user_type.value).order_by(User.created_at.desc(), User.id.desc())
        )
        return list(result.scalars().all())


class StudentRepository(BaseRepository[Student]):
    """Repository for Student model operations."""

    model_class = Student

    async def get_by_user_id(self, user_id: int) -> Optional[Student]:
        """Get student record of a user."""
        result = await self.session.execute(
            select(Student).where(Student.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def mark_paid(self, user_id: int) -> bool:
        """Set the legacy is_paid flag; True only on the first flip."""
        result = await self.session.execute(
            update(Student)
            .where(Student.user_id == user_id, Student.is_paid.is_(False))
            .values(is_paid=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


class CartRepository(BaseRepository[Cart]):
    """Cart collaborator: read items at checkout, clear them after payment."""

    model_class = Cart

    async def get_by_user_id(self, user_id: int) -> Optional[Cart]:
        result = await self.session.execute(
            select(Cart).where(Cart.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_items(self, user_id: int) -> list[dict]:
        """Items currently in the user's cart (empty when there is no cart)."""
        cart = await self.get_by_user_id(user_id)
        return list(cart.items or []) if cart else []

    async def clear(self, user_id: int) -> bool:
        """Empty the user's cart. Returns False when the user has no cart."""
        result = await self.session.execute(
            update(Cart)
            .where(Cart.user_id == user_id)
            .values(items=[], total_amount=0)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
