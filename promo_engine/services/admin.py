# promo_engine/services/admin.py
"""
Promo code administration.

Code, discount type and discount amount are fixed at creation. Everything
else (description, scope, limits, validity window, active flag) may change
afterwards. A code that has been redeemed can only be deactivated, never
deleted.
"""
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from promo_engine.errors import (
    PromoCodeExists,
    PromoCodeNotFound,
    PromoCodeInUse,
    FrozenFieldError,
    InvalidLimits,
)
from promo_engine.models.promo_code import PromoCode, DiscountType, FROZEN_FIELDS, normalize_code
from promo_engine.money import Money, MAX_PERCENTAGE_BPS
from promo_engine.services import ledger, stripe_sync
from promo_engine.services.validator import find_promo_code
from promo_engine.timeutils import utcnow

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "description",
    "minimum_purchase",
    "max_uses",
    "max_uses_per_user",
    "valid_from",
    "valid_until",
    "template_id",
    "creator_id",
    "is_active",
)


def _check_limits(max_uses, max_uses_per_user, valid_from, valid_until, used_count=0):
    if max_uses is not None and max_uses < 1:
        raise InvalidLimits("max_uses must be at least 1")
    if max_uses is not None and max_uses < used_count:
        raise InvalidLimits(f"max_uses cannot be lower than the {used_count} uses already recorded")
    if max_uses_per_user is not None and max_uses_per_user < 1:
        raise InvalidLimits("max_uses_per_user must be at least 1")
    if valid_from and valid_until and valid_until < valid_from:
        raise InvalidLimits("valid_until must not be earlier than valid_from")


def get_promo_code(db: Session, code: str) -> PromoCode:
    promo = find_promo_code(db, code)
    if not promo:
        raise PromoCodeNotFound(code)
    return promo


def list_promo_codes(db: Session, active: bool | None = None):
    q = db.query(PromoCode)
    if active is not None:
        q = q.filter(PromoCode.is_active.is_(active))
    return q.order_by(PromoCode.created_at.desc(), PromoCode.id.desc()).all()


def create_promo_code(
    db: Session,
    code: str,
    discount_type: DiscountType | str,
    discount_amount: int,
    description: str | None = None,
    minimum_purchase: Money | None = None,
    max_uses: int | None = None,
    max_uses_per_user: int = 1,
    valid_from: datetime | None = None,
    valid_until: datetime | None = None,
    template_id: int | None = None,
    creator_id: int | None = None,
    is_active: bool = True,
    created_by: str | None = None,
) -> PromoCode:
    """
    Create a promo code.

    discount_amount is already in engine units: basis points for percentage
    codes, cents for fixed codes.
    """
    code = normalize_code(code)
    if not code:
        raise InvalidLimits("code is required")
    if discount_amount is None or discount_amount <= 0:
        raise InvalidLimits("discount_amount must be greater than 0")
    if DiscountType(discount_type) is DiscountType.PERCENTAGE and discount_amount > MAX_PERCENTAGE_BPS:
        raise InvalidLimits("percentage discount cannot exceed 100%")

    valid_from = valid_from or utcnow()
    _check_limits(max_uses, max_uses_per_user, valid_from, valid_until)

    if find_promo_code(db, code):
        raise PromoCodeExists(code)
    # end the lookup transaction so the database is not held during the Stripe call
    db.rollback()

    promo = PromoCode(
        code=code,
        discount_type=DiscountType(discount_type).value,
        discount_amount=discount_amount,
        description=description,
        minimum_purchase=minimum_purchase,
        max_uses=max_uses,
        max_uses_per_user=max_uses_per_user,
        valid_from=valid_from,
        valid_until=valid_until,
        template_id=template_id,
        creator_id=creator_id,
        is_active=is_active,
        used_count=0,
        created_by=created_by,
    )
    promo.stripe_coupon_id = stripe_sync.create_coupon(promo)

    db.add(promo)
    try:
        db.commit()
    except IntegrityError as e:
        # lost a race against a concurrent create of the same code
        db.rollback()
        stripe_sync.delete_coupon(promo.stripe_coupon_id)
        raise PromoCodeExists(code) from e
    db.refresh(promo)

    logger.info("admin: promo code %s created by %s", promo.code, created_by)
    return promo


def update_promo_code(db: Session, code: str, changes: dict) -> PromoCode:
    promo = get_promo_code(db, code)

    frozen = [k for k in changes if k in FROZEN_FIELDS]
    if frozen:
        raise FrozenFieldError(f"{', '.join(frozen)} cannot be changed after the promo code is created")
    unknown = [k for k in changes if k not in EDITABLE_FIELDS]
    if unknown:
        raise InvalidLimits(f"unknown fields: {', '.join(unknown)}")

    for field in ("max_uses_per_user", "is_active"):
        if field in changes and changes[field] is None:
            raise InvalidLimits(f"{field} cannot be null")

    merged = {f: changes.get(f, getattr(promo, f)) for f in ("max_uses", "max_uses_per_user", "valid_from", "valid_until")}
    _check_limits(used_count=promo.used_count or 0, **merged)

    for field, value in changes.items():
        setattr(promo, field, value)

    db.commit()
    db.refresh(promo)

    logger.info("admin: promo code %s updated (%s)", promo.code, ", ".join(sorted(changes)))
    return promo


def set_active(db: Session, code: str, active: bool) -> PromoCode:
    promo = get_promo_code(db, code)
    promo.is_active = active
    db.commit()
    db.refresh(promo)

    logger.info("admin: promo code %s %s", promo.code, "activated" if active else "deactivated")
    return promo


def delete_promo_code(db: Session, code: str) -> None:
    """Hard delete, allowed only while the code has never been redeemed."""
    promo = get_promo_code(db, code)
    uses = ledger.count_for_code(db, promo.id)
    if uses:
        raise PromoCodeInUse(f"Promo code '{promo.code}' has {uses} redemptions; deactivate it instead")

    coupon_id = promo.stripe_coupon_id
    db.delete(promo)
    try:
        db.commit()
    except IntegrityError as e:
        # a redemption was committed between the count and the delete
        db.rollback()
        raise PromoCodeInUse(f"Promo code '{promo.code}' has redemptions; deactivate it instead") from e
    stripe_sync.delete_coupon(coupon_id)

    logger.info("admin: promo code %s deleted", promo.code)
