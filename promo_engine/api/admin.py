"""
🎉 ADMIN API - Promo code management.
Only e-mails listed in ADMIN_EMAILS can reach these routes.
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.orm import Session

from promo_engine.api.serializers import (
    serialize_promo_code,
    serialize_redemption,
    serialize_stats,
    serialize_code_stats,
)
from promo_engine.database import get_db, get_read_db
from promo_engine.dependencies import require_admin, get_promo_engine
from promo_engine.errors import PromoCodeExists, PromoCodeNotFound, PromoCodeInUse, FrozenFieldError, InvalidLimits
from promo_engine.models.promo_code import DiscountType
from promo_engine.money import Money, parse_percentage
from promo_engine.services import admin as admin_service
from promo_engine.services import ledger
from promo_engine.services import stats as stats_service
from promo_engine.services.engine import PromoEngine
from promo_engine.timeutils import to_naive_utc

router = APIRouter(prefix="/api/admin/promo-codes", tags=["admin"])


def _minimum_purchase(value: Decimal | None) -> Money | None:
    return Money.parse(value) if value is not None else None


class PromoCodeCreateRequest(BaseModel):
    code: str = Field(min_length=3, max_length=50)  # e.g., "SUMMER2024"
    description: str | None = None
    discount_type: DiscountType
    discount_amount: Decimal  # percent (e.g. 20 or 12.5) or major units (e.g. 10.00)
    minimum_purchase: Decimal | None = None  # major units
    max_uses: int | None = Field(default=None, ge=1)  # None = unlimited
    max_uses_per_user: int = Field(default=1, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    template_id: int | None = None
    creator_id: int | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def _check_amounts(self):
        self.discount_units()
        _minimum_purchase(self.minimum_purchase)
        return self

    def discount_units(self) -> int:
        """Basis points for percentage codes, cents for fixed codes."""
        if self.discount_type is DiscountType.PERCENTAGE:
            return parse_percentage(self.discount_amount)
        cents = Money.parse(self.discount_amount).cents
        if cents <= 0:
            raise ValueError("discount_amount must be greater than 0")
        return cents


class PromoCodeUpdateRequest(BaseModel):
    # code, discount_type and discount_amount are frozen after creation
    model_config = ConfigDict(extra="forbid")

    description: str | None = None
    minimum_purchase: Decimal | None = None
    max_uses: int | None = Field(default=None, ge=1)
    max_uses_per_user: int | None = Field(default=None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    template_id: int | None = None
    creator_id: int | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def _check_amounts(self):
        _minimum_purchase(self.minimum_purchase)
        return self

    def changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True)
        if "minimum_purchase" in changes:
            changes["minimum_purchase"] = _minimum_purchase(changes["minimum_purchase"])
        for key in ("valid_from", "valid_until"):
            if key in changes:
                changes[key] = to_naive_utc(changes[key])
        return changes


def _not_found(code: str):
    return HTTPException(status_code=404, detail=f"Promo code '{code}' not found")


@router.post("", status_code=201)
def create_promo_code(data: PromoCodeCreateRequest, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """
    🎉 Create a new promo code.

    Example:
    POST /api/admin/promo-codes
    {
        "code": "SAVE20",
        "discount_type": "percentage",
        "discount_amount": 20,
        "max_uses": 100,
        "valid_until": "2026-12-31T23:59:59Z"
    }
    """
    try:
        promo = admin_service.create_promo_code(
            db,
            code=data.code,
            discount_type=data.discount_type,
            discount_amount=data.discount_units(),
            description=data.description,
            minimum_purchase=_minimum_purchase(data.minimum_purchase),
            max_uses=data.max_uses,
            max_uses_per_user=data.max_uses_per_user,
            valid_from=to_naive_utc(data.valid_from),
            valid_until=to_naive_utc(data.valid_until),
            template_id=data.template_id,
            creator_id=data.creator_id,
            is_active=data.is_active,
            created_by=admin,
        )
    except PromoCodeExists:
        raise HTTPException(status_code=400, detail="Promo code already exists")
    except InvalidLimits as e:
        raise HTTPException(status_code=400, detail=str(e))

    return serialize_promo_code(promo)


@router.get("")
def list_promo_codes(active: bool | None = Query(default=None), admin: str = Depends(require_admin), db: Session = Depends(get_read_db)):
    """📋 List all promo codes with their status and usage."""
    promos = admin_service.list_promo_codes(db, active=active)
    return [serialize_promo_code(p) for p in promos]


@router.get("/stats")
def get_stats(
    top: int | None = Query(default=None, ge=1, le=100),
    admin: str = Depends(require_admin),
    engine: PromoEngine = Depends(get_promo_engine),
):
    """📊 Totals and top-performing codes."""
    return serialize_stats(engine.get_stats(top_n=top))


@router.get("/{code}")
def get_promo_code(code: str, admin: str = Depends(require_admin), db: Session = Depends(get_read_db)):
    try:
        promo = admin_service.get_promo_code(db, code)
    except PromoCodeNotFound:
        raise _not_found(code)
    return serialize_promo_code(promo)


@router.get("/{code}/stats")
def get_code_stats(code: str, admin: str = Depends(require_admin), db: Session = Depends(get_read_db)):
    try:
        s = stats_service.get_code_stats(db, code)
    except PromoCodeNotFound:
        raise _not_found(code)
    return serialize_code_stats(s)


@router.get("/{code}/redemptions")
def list_redemptions(
    code: str,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    admin: str = Depends(require_admin),
    db: Session = Depends(get_read_db),
):
    try:
        promo = admin_service.get_promo_code(db, code)
    except PromoCodeNotFound:
        raise _not_found(code)
    return [serialize_redemption(r) for r in ledger.list_for_code(db, promo.id, limit=limit, offset=offset)]


@router.patch("/{code}")
def update_promo_code(code: str, data: PromoCodeUpdateRequest, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """✏️ Update the non-financial fields of a promo code."""
    try:
        promo = admin_service.update_promo_code(db, code, data.changes())
    except PromoCodeNotFound:
        raise _not_found(code)
    except FrozenFieldError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except InvalidLimits as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_promo_code(promo)


@router.delete("/{code}")
def delete_promo_code(code: str, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """🗑️ Delete a promo code that has never been redeemed."""
    try:
        admin_service.delete_promo_code(db, code)
    except PromoCodeNotFound:
        raise _not_found(code)
    except PromoCodeInUse as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": f"Promo code '{code.upper()}' deleted successfully"}


@router.post("/{code}/deactivate")
def deactivate_promo_code(code: str, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """🛑 Stop new redemptions without deleting the code."""
    try:
        promo = admin_service.set_active(db, code, False)
    except PromoCodeNotFound:
        raise _not_found(code)
    return {"message": f"Promo code '{promo.code}' deactivated", "is_active": promo.is_active}


@router.post("/{code}/activate")
def activate_promo_code(code: str, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """✅ Re-enable a previously deactivated code."""
    try:
        promo = admin_service.set_active(db, code, True)
    except PromoCodeNotFound:
        raise _not_found(code)
    return {"message": f"Promo code '{promo.code}' activated", "is_active": promo.is_active}
