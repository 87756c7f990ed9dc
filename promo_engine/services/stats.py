# promo_engine/services/stats.py
"""📊 Read-only reporting over promo codes and the redemption ledger."""
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from promo_engine.errors import PromoCodeNotFound
from promo_engine.models.promo_code import PromoCode
from promo_engine.models.redemption import PromoCodeRedemption
from promo_engine.money import Money
from promo_engine.services import ledger
from promo_engine.services.ledger import cents
from promo_engine.services.validator import find_promo_code
from promo_engine.timeutils import utcnow, to_naive_utc


@dataclass(frozen=True)
class TopCode:
    code: str
    description: str | None
    uses: int
    total_discount: Money


@dataclass(frozen=True)
class PromoStats:
    total_codes: int
    active_codes: int
    total_redemptions: int
    total_discount_given: Money
    top_codes: list = field(default_factory=list)


@dataclass(frozen=True)
class CodeStats:
    code: str
    is_active: bool
    used_count: int
    max_uses: int | None
    remaining_uses: int | None
    usage_percentage: float | None
    is_expired: bool
    is_maxed_out: bool
    redemptions: int
    distinct_users: int
    total_discount: Money


def live_filter(now: datetime):
    """SQL form of PromoCode.is_live(now)."""
    return (
        PromoCode.is_active.is_(True),
        or_(PromoCode.valid_until.is_(None), PromoCode.valid_until >= now),
        or_(PromoCode.max_uses.is_(None), PromoCode.used_count < PromoCode.max_uses),
    )


def get_stats(db: Session, now: datetime | None = None, top_n: int = 10) -> PromoStats:
    now = to_naive_utc(now) or utcnow()

    total_codes = db.query(func.count(PromoCode.id)).scalar() or 0
    active_codes = db.query(func.count(PromoCode.id)).filter(*live_filter(now)).scalar() or 0

    total_redemptions, total_discount = db.query(
        func.count(PromoCodeRedemption.id),
        func.coalesce(func.sum(cents(PromoCodeRedemption.discount_applied)), 0),
    ).one()

    uses = func.count(PromoCodeRedemption.id)
    rows = (
        db.query(
            PromoCode.code,
            PromoCode.description,
            uses.label("uses"),
            func.coalesce(func.sum(cents(PromoCodeRedemption.discount_applied)), 0).label("total_discount"),
        )
        .outerjoin(PromoCodeRedemption, PromoCodeRedemption.promo_code_id == PromoCode.id)
        .group_by(PromoCode.id, PromoCode.code, PromoCode.description)
        .order_by(uses.desc(), PromoCode.code.asc())
        .limit(top_n)
        .all()
    )

    return PromoStats(
        total_codes=total_codes,
        active_codes=active_codes,
        total_redemptions=total_redemptions or 0,
        total_discount_given=Money(int(total_discount or 0)),
        top_codes=[
            TopCode(code=r.code, description=r.description, uses=r.uses, total_discount=Money(int(r.total_discount or 0)))
            for r in rows
        ],
    )


def get_code_stats(db: Session, code: str, now: datetime | None = None) -> CodeStats:
    now = to_naive_utc(now) or utcnow()
    promo = find_promo_code(db, code)
    if promo is None:
        raise PromoCodeNotFound(code)

    used = promo.used_count or 0
    return CodeStats(
        code=promo.code,
        is_active=bool(promo.is_active),
        used_count=used,
        max_uses=promo.max_uses,
        remaining_uses=promo.remaining_uses,
        usage_percentage=round(used / promo.max_uses * 100, 1) if promo.max_uses else None,
        is_expired=promo.is_expired(now),
        is_maxed_out=promo.is_maxed_out,
        redemptions=ledger.count_for_code(db, promo.id),
        distinct_users=ledger.distinct_users_for_code(db, promo.id),
        total_discount=ledger.total_discount_for_code(db, promo.id),
    )
