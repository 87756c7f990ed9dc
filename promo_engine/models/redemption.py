from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from promo_engine.database import Base
from promo_engine.models.types import MoneyType
from promo_engine.money import Money
from promo_engine.timeutils import utcnow


class PromoCodeRedemption(Base):
    """One successful use of a promo code. Rows are append-only."""
    __tablename__ = "promo_code_redemptions"
    __table_args__ = (
        Index("ix_redemptions_code_user", "promo_code_id", "user_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    purchase_amount = Column(MoneyType, nullable=False)
    discount_applied = Column(MoneyType, nullable=False)
    purchase_reference = Column(String(128), nullable=True)  # caller's order/purchase id
    redeemed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    promo_code = relationship("PromoCode", backref="redemptions")

    def snapshot(self) -> "RedemptionRecord":
        return RedemptionRecord(
            id=self.id,
            promo_code_id=self.promo_code_id,
            user_id=self.user_id,
            purchase_amount=self.purchase_amount,
            discount_applied=self.discount_applied,
            purchase_reference=self.purchase_reference,
            redeemed_at=self.redeemed_at,
        )


@dataclass(frozen=True)
class RedemptionRecord:
    id: int
    promo_code_id: int
    user_id: str
    purchase_amount: Money
    discount_applied: Money
    purchase_reference: str | None
    redeemed_at: datetime
