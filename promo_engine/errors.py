# promo_engine/errors.py
from enum import Enum


class RejectionReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    MAX_USES_REACHED = "max_uses_reached"
    USER_MAX_USES_REACHED = "user_max_uses_reached"
    MINIMUM_PURCHASE_NOT_MET = "minimum_purchase_not_met"
    SCOPE_MISMATCH = "scope_mismatch"


REJECTION_MESSAGES = {
    RejectionReason.NOT_FOUND: "Invalid promo code",
    RejectionReason.INACTIVE: "This promo code is no longer active",
    RejectionReason.NOT_YET_VALID: "This promo code is not yet active",
    RejectionReason.EXPIRED: "This promo code has expired",
    RejectionReason.MAX_USES_REACHED: "This promo code has reached its usage limit",
    RejectionReason.USER_MAX_USES_REACHED: "You have already used this promo code",
    RejectionReason.MINIMUM_PURCHASE_NOT_MET: "Minimum purchase not met for this promo code",
    RejectionReason.SCOPE_MISMATCH: "This promo code is not valid for this purchase",
}


class PromoEngineError(Exception):
    """Base class for errors raised by the promo engine."""


class RedemptionContention(PromoEngineError):
    """The redemption could not be committed because of concurrent access. Retry later."""

    def __init__(self, message="Promo code is busy, please retry", attempts=0):
        super().__init__(message)
        self.attempts = attempts


class StorageError(PromoEngineError):
    """The database failed for a reason other than contention."""


class PromoCodeNotFound(PromoEngineError):
    pass


class PromoCodeExists(PromoEngineError):
    pass


class PromoCodeInUse(PromoEngineError):
    """The promo code has redemptions and cannot be deleted."""


class FrozenFieldError(PromoEngineError):
    """Attempt to change a field that is immutable after creation."""


class InvalidLimits(PromoEngineError):
    pass
