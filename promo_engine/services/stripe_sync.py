# promo_engine/services/stripe_sync.py
"""
Mirror promo codes as one-off Stripe coupons so hosted checkout can honour
them. Disabled unless STRIPE_SECRET_KEY is set. A Stripe failure never
blocks the local promo code; it is logged and the code stays unmirrored.
"""
import logging
from datetime import timezone

import stripe

from promo_engine import config
from promo_engine.models.promo_code import DiscountType
from promo_engine.money import BASIS_POINTS_PER_PERCENT

logger = logging.getLogger(__name__)


def is_enabled() -> bool:
    return bool(config.STRIPE_SECRET_KEY)


def coupon_params(promo) -> dict:
    params = {
        "id": promo.code,
        "name": promo.code,
        "duration": "once",
    }
    if DiscountType(promo.discount_type) is DiscountType.PERCENTAGE:
        params["percent_off"] = promo.discount_amount / BASIS_POINTS_PER_PERCENT
    else:
        params["amount_off"] = promo.discount_amount
        params["currency"] = config.STRIPE_CURRENCY
    if promo.max_uses is not None:
        params["max_redemptions"] = promo.max_uses
    if promo.valid_until is not None:
        params["redeem_by"] = int(promo.valid_until.replace(tzinfo=timezone.utc).timestamp())
    return params


def create_coupon(promo) -> str | None:
    if not is_enabled():
        return None
    stripe.api_key = config.STRIPE_SECRET_KEY
    try:
        coupon = stripe.Coupon.create(**coupon_params(promo))
    except stripe.StripeError as e:
        logger.warning("stripe: failed to create coupon for %s: %s", promo.code, e)
        return None
    logger.info("stripe: coupon %s created for promo %s", coupon.id, promo.code)
    return coupon.id


def delete_coupon(coupon_id: str | None) -> bool:
    if not coupon_id or not is_enabled():
        return False
    stripe.api_key = config.STRIPE_SECRET_KEY
    try:
        stripe.Coupon.delete(coupon_id)
    except stripe.StripeError as e:
        logger.warning("stripe: failed to delete coupon %s: %s", coupon_id, e)
        return False
    logger.info("stripe: coupon %s deleted", coupon_id)
    return True
