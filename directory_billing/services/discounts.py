import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from directory_billing.exceptions import DiscountCodeError
from directory_billing.models.discount_code import DiscountCode

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def apply_discount_code(db: AsyncSession, code_ref: str) -> DiscountCode:
    """Redeem a discount code, looked up by id or by code string.

    Increments ``current_uses`` and commits. Raises DiscountCodeError when the
    code is unknown, inactive, outside its validity window or used up.
    """
    result = await db.execute(
        select(DiscountCode).where(
            or_(DiscountCode.id == code_ref, DiscountCode.code == code_ref)
        )
    )
    discount = result.scalars().first()
    if discount is None:
        raise DiscountCodeError(f"Discount code {code_ref!r} not found")
    if not discount.is_active:
        raise DiscountCodeError(f"Discount code {discount.code!r} is inactive")

    now = datetime.now(timezone.utc)
    if discount.valid_from and _as_utc(discount.valid_from) > now:
        raise DiscountCodeError(f"Discount code {discount.code!r} is not valid yet")
    if discount.valid_until and _as_utc(discount.valid_until) < now:
        raise DiscountCodeError(f"Discount code {discount.code!r} has expired")

    uses = discount.current_uses or 0
    if discount.max_uses is not None and uses >= discount.max_uses:
        raise DiscountCodeError(f"Discount code {discount.code!r} has reached its usage limit")

    discount.current_uses = uses + 1
    await db.commit()
    logger.info(f"Discount code {discount.code} applied ({discount.current_uses} uses)")
    return discount
