"""
Account lookups used by the booking core

The booking core only reads a user's payment customer reference and writes
it once, when the first payment attempt creates the customer.
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from sqlalchemy import select, update

from destiine.models import User

logger = logging.getLogger(__name__)


class AccountRepository(ABC):
    @abstractmethod
    async def get_customer_id(self, user_id: int) -> Optional[str]:
        ...

    @abstractmethod
    async def set_customer_id(self, user_id: int, customer_id: str) -> None:
        ...


class SqlAccountRepository(AccountRepository):
    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    async def get_customer_id(self, user_id):
        async with self.session_factory() as db:
            result = await db.execute(select(User.customer_id).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def set_customer_id(self, user_id, customer_id):
        async with self.session_factory() as db:
            await db.execute(
                update(User)
                .where(User.id == user_id, User.customer_id.is_(None))
                .values(customer_id=customer_id)
            )
        logger.info(f"Stored payment customer {customer_id} for user {user_id}")


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.customers: Dict[int, str] = {}

    async def get_customer_id(self, user_id):
        return self.customers.get(user_id)

    async def set_customer_id(self, user_id, customer_id):
        self.customers.setdefault(user_id, customer_id)
