from datetime import datetime

from promo_engine.models.promo_code import DiscountType
from promo_engine.money import Money, format_percentage
from promo_engine.timeutils import utcnow


def _iso(dt: datetime | None):
    return dt.isoformat() if dt else None


def _cents(m: Money | None):
    return m.cents if m is not None else None


def discount_label(promo) -> str:
    if DiscountType(promo.discount_type) is DiscountType.PERCENTAGE:
        return f"{format_percentage(promo.discount_amount)}%"
    return str(Money(promo.discount_amount))


def serialize_promo_code(promo, now: datetime | None = None):
    """Convert a PromoCode row to a JSON-ready dict. Money values are in cents."""
    now = now or utcnow()
    return {
        "id": promo.id,
        "code": promo.code,
        "description": promo.description,
        "discount_type": promo.discount_type,
        "discount_amount": promo.discount_amount,
        "discount_label": discount_label(promo),
        "minimum_purchase": _cents(promo.minimum_purchase),
        "max_uses": promo.max_uses,
        "max_uses_per_user": promo.max_uses_per_user,
        "used_count": promo.used_count,
        "remaining_uses": promo.remaining_uses,
        "valid_from": _iso(promo.valid_from),
        "valid_until": _iso(promo.valid_until),
        "template_id": promo.template_id,
        "creator_id": promo.creator_id,
        "is_active": promo.is_active,
        "is_expired": promo.is_expired(now),
        "is_maxed_out": promo.is_maxed_out,
        "stripe_coupon_id": promo.stripe_coupon_id,
        "created_by": promo.created_by,
        "created_at": _iso(promo.created_at),
    }


def serialize_redemption(r):
    return {
        "id": r.id,
        "promo_code_id": r.promo_code_id,
        "user_id": r.user_id,
        "purchase_amount": r.purchase_amount.cents,
        "discount_applied": r.discount_applied.cents,
        "purchase_reference": r.purchase_reference,
        "redeemed_at": _iso(r.redeemed_at),
    }


def serialize_stats(stats):
    return {
        "total_codes": stats.total_codes,
        "active_codes": stats.active_codes,
        "total_uses": stats.total_redemptions,
        "total_discount_given": stats.total_discount_given.cents,
        "top_performing_codes": [
            {
                "code": t.code,
                "description": t.description,
                "uses": t.uses,
                "total_discount": t.total_discount.cents,
            }
            for t in stats.top_codes
        ],
    }


def serialize_code_stats(s):
    return {
        "code": s.code,
        "is_active": s.is_active,
        "used_count": s.used_count,
        "max_uses": s.max_uses,
        "remaining_uses": s.remaining_uses if s.max_uses is not None else "Unlimited",
        "usage_percentage": f"{s.usage_percentage:.1f}%" if s.usage_percentage is not None else "Unlimited",
        "is_expired": s.is_expired,
        "is_maxed_out": s.is_maxed_out,
        "redemptions": s.redemptions,
        "distinct_users": s.distinct_users,
        "total_discount": s.total_discount.cents,
    }
