# promo_engine/services/validator.py
"""
Read-only promo code validation.

Rules run in a fixed order and stop at the first failure, so a given state
always produces the same rejection reason. Nothing here writes to the
database: the usage-cap checks are advisory and are repeated atomically by
the redemption coordinator.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from promo_engine.errors import RejectionReason, REJECTION_MESSAGES
from promo_engine.models.promo_code import PromoCode, PromoSnapshot, normalize_code
from promo_engine.money import Money
from promo_engine.services import ledger
from promo_engine.timeutils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseContext:
    user_id: str
    purchase_amount: Money
    template_id: int | None = None
    creator_id: int | None = None
    requested_at: datetime = field(default_factory=utcnow)

    @property
    def now(self) -> datetime:
        return to_naive_utc(self.requested_at)


@dataclass(frozen=True)
class ValidationOutcome:
    accepted: bool
    reason: RejectionReason | None = None
    promo: PromoSnapshot | None = None
    discount: Money | None = None
    final_amount: Money | None = None

    @classmethod
    def accept(cls, promo: PromoSnapshot) -> "ValidationOutcome":
        return cls(accepted=True, promo=promo)

    @classmethod
    def reject(cls, reason: RejectionReason, promo: PromoSnapshot | None = None) -> "ValidationOutcome":
        return cls(accepted=False, reason=reason, promo=promo)

    @property
    def message(self) -> str | None:
        return REJECTION_MESSAGES.get(self.reason) if self.reason else None


def find_promo_code(db: Session, code: str) -> PromoCode | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.query(PromoCode).filter(PromoCode.code == normalized).first()


def check_window(promo, now: datetime) -> RejectionReason | None:
    """Rules 2-4: active flag and validity window (valid_until is inclusive)."""
    if not promo.is_active:
        return RejectionReason.INACTIVE
    if promo.valid_from is not None and now < promo.valid_from:
        return RejectionReason.NOT_YET_VALID
    if promo.valid_until is not None and now > promo.valid_until:
        return RejectionReason.EXPIRED
    return None


def check_usage(promo, user_uses: int) -> RejectionReason | None:
    """Rules 5-6: global cap, then the per-user cap."""
    if promo.max_uses is not None and (promo.used_count or 0) >= promo.max_uses:
        return RejectionReason.MAX_USES_REACHED
    if user_uses >= (promo.max_uses_per_user or 1):
        return RejectionReason.USER_MAX_USES_REACHED
    return None


def check_purchase(promo, context: PurchaseContext) -> RejectionReason | None:
    """Rules 7-8: minimum purchase, then template/creator scope."""
    if promo.minimum_purchase is not None and context.purchase_amount < promo.minimum_purchase:
        return RejectionReason.MINIMUM_PURCHASE_NOT_MET
    if promo.template_id is not None and context.template_id != promo.template_id:
        return RejectionReason.SCOPE_MISMATCH
    if promo.creator_id is not None and context.creator_id != promo.creator_id:
        return RejectionReason.SCOPE_MISMATCH
    return None


def check_rules(promo: PromoSnapshot, user_uses: int, context: PurchaseContext) -> RejectionReason | None:
    return (
        check_window(promo, context.now)
        or check_usage(promo, user_uses)
        or check_purchase(promo, context)
    )


def validate(db: Session, code: str, context: PurchaseContext) -> ValidationOutcome:
    promo = find_promo_code(db, code)
    if promo is None:
        logger.debug("promo %r rejected for %s: %s", code, context.user_id, RejectionReason.NOT_FOUND.value)
        return ValidationOutcome.reject(RejectionReason.NOT_FOUND)

    snapshot = promo.snapshot()
    user_uses = ledger.count_for_user(db, snapshot.id, context.user_id)
    reason = check_rules(snapshot, user_uses, context)
    if reason is not None:
        logger.debug("promo %s rejected for %s: %s", snapshot.code, context.user_id, reason.value)
        return ValidationOutcome.reject(reason, snapshot)

    return ValidationOutcome.accept(snapshot)
