from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, BigInteger, Text, CheckConstraint
from sqlalchemy.orm import validates
from sqlalchemy.sql import func

from promo_engine.database import Base
from promo_engine.errors import FrozenFieldError
from promo_engine.models.types import MoneyType
from promo_engine.money import Money


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


FROZEN_FIELDS = ("code", "discount_type", "discount_amount")


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint("used_count >= 0", name="ck_promo_used_count_ge_0"),
        CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="ck_promo_used_le_max"),
        CheckConstraint("max_uses_per_user >= 1", name="ck_promo_per_user_ge_1"),
        CheckConstraint("discount_amount > 0", name="ck_promo_discount_gt_0"),
        CheckConstraint("discount_type IN ('percentage','fixed')", name="ck_promo_discount_type"),
        CheckConstraint(
            "discount_type != 'percentage' OR discount_amount <= 10000", name="ck_promo_percentage_le_100"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)  # stored upper-case, e.g. "SAVE20"
    description = Column(Text, nullable=True)

    discount_type = Column(String(16), nullable=False)
    # basis points for percentage codes (2000 = 20%), cents for fixed codes
    discount_amount = Column(BigInteger, nullable=False)

    minimum_purchase = Column(MoneyType, nullable=True)
    max_uses = Column(Integer, nullable=True)  # Null = unlimited
    max_uses_per_user = Column(Integer, nullable=False, default=1)
    used_count = Column(Integer, nullable=False, default=0)

    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)  # Null = never expires, inclusive bound

    template_id = Column(Integer, nullable=True, index=True)
    creator_id = Column(Integer, nullable=True, index=True)

    is_active = Column(Boolean, nullable=False, default=True)
    stripe_coupon_id = Column(String(64), nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @validates(*FROZEN_FIELDS)
    def _guard_frozen(self, key, value):
        if key == "code":
            value = normalize_code(value)
        if key == "discount_type":
            value = DiscountType(value).value
        if self.id is not None and getattr(self, key) != value:
            raise FrozenFieldError(f"{key} cannot be changed after the promo code is created")
        return value

    def is_expired(self, now: datetime) -> bool:
        return self.valid_until is not None and now > self.valid_until

    @property
    def is_maxed_out(self) -> bool:
        return self.max_uses is not None and (self.used_count or 0) >= self.max_uses

    def is_live(self, now: datetime) -> bool:
        return bool(self.is_active) and not self.is_expired(now) and not self.is_maxed_out

    @property
    def remaining_uses(self) -> int | None:
        if self.max_uses is None:
            return None
        return max(self.max_uses - (self.used_count or 0), 0)

    def snapshot(self) -> "PromoSnapshot":
        return PromoSnapshot(
            id=self.id,
            code=self.code,
            description=self.description,
            discount_type=DiscountType(self.discount_type),
            discount_amount=self.discount_amount,
            minimum_purchase=self.minimum_purchase,
            max_uses=self.max_uses,
            max_uses_per_user=self.max_uses_per_user,
            used_count=self.used_count or 0,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            template_id=self.template_id,
            creator_id=self.creator_id,
            is_active=bool(self.is_active),
            stripe_coupon_id=self.stripe_coupon_id,
        )


@dataclass(frozen=True)
class PromoSnapshot:
    """Detached, read-only view of a promo code row at one point in time."""
    id: int
    code: str
    description: str | None
    discount_type: DiscountType
    discount_amount: int
    minimum_purchase: Money | None
    max_uses: int | None
    max_uses_per_user: int
    used_count: int
    valid_from: datetime | None
    valid_until: datetime | None
    template_id: int | None
    creator_id: int | None
    is_active: bool
    stripe_coupon_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.valid_until is not None and now > self.valid_until

    @property
    def is_maxed_out(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses
