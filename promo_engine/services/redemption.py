# promo_engine/services/redemption.py
"""
🔐 Redemption commit: the only code path that changes promo_codes.used_count.

Each attempt runs in its own transaction:

  1. lock the promo row (SELECT ... FOR UPDATE; SQLite serializes writers
     with BEGIN IMMEDIATE instead)
  2. re-read active flag, validity window and used_count
  3. re-check the global cap and the per-user cap against the ledger
  4. increment used_count with a guarded UPDATE and append the ledger row
  5. commit

A lock timeout, deadlock or serialization failure rolls the attempt back and
retries with exponential back-off. When the attempts or the deadline run out,
RedemptionContention is raised. Any other database error becomes
StorageError, so an outage is never reported as an invalid code.
"""
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from promo_engine import config
from promo_engine.errors import RejectionReason, RedemptionContention, StorageError
from promo_engine.models.promo_code import PromoCode
from promo_engine.models.redemption import RedemptionRecord
from promo_engine.money import Money
from promo_engine.services import ledger
from promo_engine.services.validator import check_window, check_usage
from promo_engine.timeutils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
CONTENTION_SQLSTATES = {"40001", "40P01", "55P03"}
CONTENTION_MESSAGES = ("database is locked", "database table is locked", "deadlock")


@dataclass(frozen=True)
class CommitPolicy:
    max_attempts: int = 5
    backoff_base: float = 0.025
    backoff_max: float = 0.8
    lock_timeout_ms: int = 2000
    commit_timeout: float = 10.0

    @classmethod
    def from_config(cls) -> "CommitPolicy":
        return cls(
            max_attempts=max(config.REDEEM_MAX_ATTEMPTS, 1),
            backoff_base=config.REDEEM_BACKOFF_BASE_MS / 1000,
            backoff_max=config.REDEEM_BACKOFF_MAX_MS / 1000,
            lock_timeout_ms=config.REDEEM_LOCK_TIMEOUT_MS,
            commit_timeout=config.REDEEM_COMMIT_TIMEOUT_MS / 1000,
        )

    def backoff(self, attempt: int) -> float:
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        return delay / 2 + random.uniform(0, delay / 2)


@dataclass(frozen=True)
class CommitResult:
    redemption: RedemptionRecord | None = None
    reason: RejectionReason | None = None

    @property
    def committed(self) -> bool:
        return self.redemption is not None


def is_contention(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return False
    orig = exc.orig
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in CONTENTION_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(m in message for m in CONTENTION_MESSAGES)


class RedemptionCoordinator:
    def __init__(self, session_factory, policy: CommitPolicy | None = None, sleep=time.sleep, clock=time.monotonic):
        self.session_factory = session_factory
        self.policy = policy or CommitPolicy.from_config()
        self._sleep = sleep
        self._clock = clock

    def commit(
        self,
        promo_code_id: int,
        user_id: str,
        purchase_amount: Money,
        discount_applied: Money,
        now: datetime | None = None,
        purchase_reference: str | None = None,
    ) -> CommitResult:
        now = to_naive_utc(now) or utcnow()
        deadline = self._clock() + self.policy.commit_timeout
        attempt = 0

        while True:
            attempt += 1
            try:
                return self._attempt(promo_code_id, user_id, purchase_amount, discount_applied, now, purchase_reference)
            except DBAPIError as exc:
                if not is_contention(exc):
                    logger.exception("redeem: storage failure for promo_code_id=%s", promo_code_id)
                    raise StorageError("Redemption could not be stored") from exc

                remaining = deadline - self._clock()
                if attempt >= self.policy.max_attempts or remaining <= 0:
                    logger.warning(
                        "redeem: giving up on promo_code_id=%s after %d attempts (contention)",
                        promo_code_id, attempt,
                    )
                    raise RedemptionContention(attempts=attempt) from exc

                delay = min(self.policy.backoff(attempt), remaining)
                logger.warning(
                    "redeem: contention on promo_code_id=%s, attempt %d, retrying in %.3fs",
                    promo_code_id, attempt, delay,
                )
                self._sleep(delay)
            except SQLAlchemyError as exc:
                logger.exception("redeem: storage failure for promo_code_id=%s", promo_code_id)
                raise StorageError("Redemption could not be stored") from exc

    def _attempt(self, promo_code_id, user_id, purchase_amount, discount_applied, now, purchase_reference) -> CommitResult:
        db: Session = self.session_factory()
        try:
            self._set_lock_timeout(db)

            promo = (
                db.query(PromoCode)
                .filter(PromoCode.id == promo_code_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if promo is None:
                db.rollback()
                return CommitResult(reason=RejectionReason.NOT_FOUND)

            user_uses = ledger.count_for_user(db, promo.id, user_id)
            reason = check_window(promo, now) or check_usage(promo, user_uses)
            if reason is not None:
                db.rollback()
                return CommitResult(reason=reason)

            # the row lock already serializes us; the WHERE clause keeps the cap
            # intact even on backends where FOR UPDATE is a no-op
            updated = (
                db.query(PromoCode)
                .filter(
                    PromoCode.id == promo.id,
                    or_(PromoCode.max_uses.is_(None), PromoCode.used_count < PromoCode.max_uses),
                )
                .update({PromoCode.used_count: PromoCode.used_count + 1}, synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                return CommitResult(reason=RejectionReason.MAX_USES_REACHED)

            row = ledger.record(
                db,
                promo_code_id=promo.id,
                user_id=user_id,
                purchase_amount=purchase_amount,
                discount_applied=discount_applied,
                redeemed_at=now,
                purchase_reference=purchase_reference,
            )
            record = row.snapshot()
            db.commit()
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "redeem: promo %s redeemed by %s, discount %s (redemption #%s)",
            promo_code_id, user_id, discount_applied, record.id,
        )
        return CommitResult(redemption=record)

    def _set_lock_timeout(self, db: Session):
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = '{int(self.policy.lock_timeout_ms)}ms'"))
