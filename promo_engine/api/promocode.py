"""
🎟️ Checkout-facing promo code API.

Validation is read-only and can be called as the user types. Redemption is
called once per purchase, after payment capture has succeeded.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from promo_engine.api.serializers import serialize_redemption
from promo_engine.dependencies import get_verified_email, get_promo_engine
from promo_engine.money import Money
from promo_engine.services.engine import PromoEngine
from promo_engine.services.validator import PurchaseContext

router = APIRouter(prefix="/api/promo-codes", tags=["promo-codes"])


class PurchaseRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    purchase_amount: int = Field(ge=0, strict=True)  # minor units (cents)
    template_id: int | None = None
    creator_id: int | None = None

    def context(self, user_id: str) -> PurchaseContext:
        return PurchaseContext(
            user_id=user_id,
            purchase_amount=Money.from_cents(self.purchase_amount),
            template_id=self.template_id,
            creator_id=self.creator_id,
        )


class RedeemRequest(PurchaseRequest):
    purchase_reference: str | None = Field(default=None, max_length=128)


@router.post("/validate")
def validate_promo_code(
    data: PurchaseRequest,
    email: str = Depends(get_verified_email),
    engine: PromoEngine = Depends(get_promo_engine),
):
    outcome = engine.validate_promo_code(data.code, data.context(email))

    if not outcome.accepted:
        return {
            "valid": False,
            "code": data.code.strip().upper(),
            "reason": outcome.reason.value,
            "message": outcome.message,
        }

    promo = outcome.promo
    return {
        "valid": True,
        "promo_code_id": promo.id,
        "code": promo.code,
        "description": promo.description,
        "discount_type": promo.discount_type.value,
        "discount_amount": promo.discount_amount,
        "discount_applied": outcome.discount.cents,
        "original_amount": data.purchase_amount,
        "final_amount": outcome.final_amount.cents,
        "stripe_coupon_id": promo.stripe_coupon_id,
    }


@router.post("/redeem")
def redeem_promo_code(
    data: RedeemRequest,
    email: str = Depends(get_verified_email),
    engine: PromoEngine = Depends(get_promo_engine),
):
    result = engine.redeem_promo_code(data.code, data.context(email), purchase_reference=data.purchase_reference)

    if not result.redeemed:
        return {
            "redeemed": False,
            "code": data.code.strip().upper(),
            "reason": result.reason.value,
            "message": result.message,
        }

    redemption = result.redemption
    return JSONResponse(
        status_code=201,
        content={
            "redeemed": True,
            "redemption_id": redemption.id,
            "code": result.outcome.promo.code,
            "discount_applied": redemption.discount_applied.cents,
            "original_amount": redemption.purchase_amount.cents,
            "final_amount": (redemption.purchase_amount - redemption.discount_applied).cents,
            "redemption": serialize_redemption(redemption),
        },
    )
