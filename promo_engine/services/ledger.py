# promo_engine/services/ledger.py
"""Read/append access to the promo_code_redemptions table."""
from datetime import datetime

from sqlalchemy import BigInteger, func, type_coerce
from sqlalchemy.orm import Session

from promo_engine.models.redemption import PromoCodeRedemption
from promo_engine.money import Money


def cents(column):
    """Treat a Money column as plain integer cents inside SQL aggregates."""
    return type_coerce(column, BigInteger)


def record(
    db: Session,
    promo_code_id: int,
    user_id: str,
    purchase_amount: Money,
    discount_applied: Money,
    redeemed_at: datetime,
    purchase_reference: str | None = None,
) -> PromoCodeRedemption:
    """
    Append a redemption row to the current transaction.

    Only the redemption coordinator calls this, inside the same transaction
    that increments promo_codes.used_count.
    """
    row = PromoCodeRedemption(
        promo_code_id=promo_code_id,
        user_id=user_id,
        purchase_amount=purchase_amount,
        discount_applied=discount_applied,
        purchase_reference=purchase_reference,
        redeemed_at=redeemed_at,
    )
    db.add(row)
    db.flush()
    return row


def count_for_code(db: Session, promo_code_id: int) -> int:
    return db.query(func.count(PromoCodeRedemption.id)).filter(
        PromoCodeRedemption.promo_code_id == promo_code_id
    ).scalar() or 0


def count_for_user(db: Session, promo_code_id: int, user_id: str) -> int:
    return db.query(func.count(PromoCodeRedemption.id)).filter(
        PromoCodeRedemption.promo_code_id == promo_code_id,
        PromoCodeRedemption.user_id == user_id,
    ).scalar() or 0


def total_discount_for_code(db: Session, promo_code_id: int) -> Money:
    total = db.query(func.coalesce(func.sum(cents(PromoCodeRedemption.discount_applied)), 0)).filter(
        PromoCodeRedemption.promo_code_id == promo_code_id
    ).scalar()
    return Money(int(total or 0))


def distinct_users_for_code(db: Session, promo_code_id: int) -> int:
    return db.query(func.count(func.distinct(PromoCodeRedemption.user_id))).filter(
        PromoCodeRedemption.promo_code_id == promo_code_id
    ).scalar() or 0


def list_for_code(db: Session, promo_code_id: int, limit: int = 100, offset: int = 0):
    return (
        db.query(PromoCodeRedemption)
        .filter(PromoCodeRedemption.promo_code_id == promo_code_id)
        .order_by(PromoCodeRedemption.redeemed_at.desc(), PromoCodeRedemption.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def list_for_user(db: Session, user_id: str, limit: int = 100):
    return (
        db.query(PromoCodeRedemption)
        .filter(PromoCodeRedemption.user_id == user_id)
        .order_by(PromoCodeRedemption.redeemed_at.desc(), PromoCodeRedemption.id.desc())
        .limit(limit)
        .all()
    )
