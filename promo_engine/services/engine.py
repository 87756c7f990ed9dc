# promo_engine/services/engine.py
import logging
from dataclasses import dataclass

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from promo_engine import config
from promo_engine.errors import RejectionReason, REJECTION_MESSAGES, RedemptionContention, StorageError
from promo_engine.models.redemption import RedemptionRecord
from promo_engine.money import Money
from promo_engine.services import stats as stats_service
from promo_engine.services.discounts import compute_discount, final_amount
from promo_engine.services.redemption import RedemptionCoordinator, CommitPolicy, is_contention
from promo_engine.services.validator import PurchaseContext, ValidationOutcome, validate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionResult:
    redeemed: bool
    reason: RejectionReason | None = None
    redemption: RedemptionRecord | None = None
    outcome: ValidationOutcome | None = None

    @property
    def message(self) -> str | None:
        return REJECTION_MESSAGES.get(self.reason) if self.reason else None

    @property
    def discount_applied(self) -> Money | None:
        return self.redemption.discount_applied if self.redemption else None


class PromoEngine:
    """
    Entry point used by checkout: validate a code, redeem it once payment has
    been captured, and report usage statistics.
    """

    def __init__(
        self,
        session_factory,
        policy: CommitPolicy | None = None,
        coordinator: RedemptionCoordinator | None = None,
        read_session_factory=None,
    ):
        self.session_factory = session_factory
        # validation and stats never write; the coordinator re-checks under lock
        self.read_session_factory = read_session_factory or session_factory
        self.coordinator = coordinator or RedemptionCoordinator(session_factory, policy)

    def validate_promo_code(self, code: str, context: PurchaseContext) -> ValidationOutcome:
        """Side-effect free; safe to call on every keystroke."""
        db = self.read_session_factory()
        try:
            outcome = validate(db, code, context)
        except DBAPIError as exc:
            if is_contention(exc):
                raise RedemptionContention("Promo code lookup timed out, please retry") from exc
            logger.exception("validate: storage failure for code %r", code)
            raise StorageError("Promo code lookup failed") from exc
        except SQLAlchemyError as exc:
            logger.exception("validate: storage failure for code %r", code)
            raise StorageError("Promo code lookup failed") from exc
        finally:
            db.rollback()
            db.close()

        if not outcome.accepted:
            return outcome

        discount = compute_discount(outcome.promo, context.purchase_amount)
        return ValidationOutcome(
            accepted=True,
            promo=outcome.promo,
            discount=discount,
            final_amount=final_amount(context.purchase_amount, discount),
        )

    def redeem_promo_code(self, code: str, context: PurchaseContext, purchase_reference: str | None = None) -> RedemptionResult:
        """
        Validate, compute the discount and commit the redemption atomically.

        Call once per completed purchase. Raises RedemptionContention when the
        commit could not get through (retryable) and StorageError on database
        failures; every other failure comes back as a rejection reason.
        """
        outcome = self.validate_promo_code(code, context)
        if not outcome.accepted:
            return RedemptionResult(redeemed=False, reason=outcome.reason, outcome=outcome)

        result = self.coordinator.commit(
            outcome.promo.id,
            context.user_id,
            context.purchase_amount,
            outcome.discount,
            now=context.now,
            purchase_reference=purchase_reference,
        )
        if not result.committed:
            logger.info("redeem: promo %s lost the race for %s: %s", outcome.promo.code, context.user_id, result.reason.value)
            return RedemptionResult(redeemed=False, reason=result.reason, outcome=outcome)

        return RedemptionResult(redeemed=True, redemption=result.redemption, outcome=outcome)

    def get_stats(self, top_n: int | None = None, now=None) -> stats_service.PromoStats:
        db = self.read_session_factory()
        try:
            return stats_service.get_stats(db, now=now, top_n=top_n or config.STATS_TOP_N)
        except SQLAlchemyError as exc:
            logger.exception("stats: storage failure")
            raise StorageError("Promo statistics unavailable") from exc
        finally:
            db.close()
