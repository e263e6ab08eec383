"""
Customer accounts created as a by-product of checkout.

The password is hashed at checkout time, before payment, and parked on the
pending payment. Only a materialized order turns it into a User, so an
abandoned or failed payment never leaves an account behind.
"""

import logging
from typing import Optional

import bcrypt
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import PendingPayment, User, UserAddress

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def split_name(full_name: str):
    parts = full_name.strip().split()
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return " ".join(parts[:-1]), parts[-1]


class AccountService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def create_from_pending(self, pending: PendingPayment) -> Optional[User]:
        """
        Create the user and a default address from the checkout details.

        Returns None when no account was requested or the email is already
        registered.
        """
        if not pending.create_account or not pending.password_hash:
            return None

        if await self.get_by_email(pending.customer_email):
            logger.info(f"Account for {pending.customer_email} already exists, skipping creation")
            return None

        first_name, last_name = split_name(pending.customer_name)
        user = User(
            email=pending.customer_email.strip().lower(),
            password_hash=pending.password_hash,
            first_name=first_name,
            last_name=last_name,
            phone=pending.customer_phone,
        )
        self.session.add(user)
        await self.session.flush()

        address = pending.shipping_address or {}
        self.session.add(UserAddress(
            user_id=user.id,
            title="Ev",
            full_name=pending.customer_name,
            phone=pending.customer_phone,
            address=address.get("address", ""),
            city=address.get("city", ""),
            district=address.get("district", ""),
            postal_code=address.get("postal_code"),
            is_default=True,
        ))
        await self.session.flush()

        logger.info(f"Created account {user.id} for {user.email} from order {pending.merchant_oid}")
        return user
