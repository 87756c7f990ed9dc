import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError, IntegrityError
from sqlalchemy.orm import sessionmaker

from promo_engine.database import make_engine, read_only
from promo_engine.errors import RejectionReason, RedemptionContention, StorageError
from promo_engine.models.promo_code import PromoCode, DiscountType
from promo_engine.models.redemption import PromoCodeRedemption
from promo_engine.money import Money
from promo_engine.services import ledger
from promo_engine.services.engine import PromoEngine
from promo_engine.services.redemption import RedemptionCoordinator, CommitPolicy, is_contention

from conftest import NOW


def _counts(session_factory, code):
    session = session_factory()
    try:
        promo = session.query(PromoCode).filter_by(code=code).one()
        ledger_rows = session.query(PromoCodeRedemption).filter_by(promo_code_id=promo.id).count()
        return promo.used_count, ledger_rows
    finally:
        session.close()


def _redeem_concurrently(promo_engine, context, code, users):
    barrier = threading.Barrier(len(users))

    def worker(user):
        barrier.wait()
        return promo_engine.redeem_promo_code(code, context(user_id=user))

    with ThreadPoolExecutor(max_workers=len(users)) as pool:
        return list(pool.map(worker, users))


def test_redeem_records_ledger_row_and_increments_counter(make_promo, context, promo_engine, session_factory):
    make_promo("SAVE20")
    result = promo_engine.redeem_promo_code("save20", context(), purchase_reference="order-1")

    assert result.redeemed
    assert result.discount_applied == Money(1000)
    assert result.redemption.purchase_amount == Money(5000)
    assert result.redemption.purchase_reference == "order-1"
    assert result.redemption.redeemed_at == NOW
    assert _counts(session_factory, "SAVE20") == (1, 1)


def test_global_cap_holds_under_concurrency(make_promo, context, promo_engine, session_factory):
    make_promo("CAP3", max_uses=3)
    users = [f"user{i}@example.com" for i in range(10)]

    results = _redeem_concurrently(promo_engine, context, "CAP3", users)

    wins = [r for r in results if r.redeemed]
    losses = [r for r in results if not r.redeemed]
    assert len(wins) == 3
    assert len(losses) == 7
    assert all(r.reason is RejectionReason.MAX_USES_REACHED for r in losses)
    assert _counts(session_factory, "CAP3") == (3, 3)


def test_last_slot_race_has_exactly_one_winner(make_promo, context, promo_engine, session_factory):
    make_promo("SAVE20", discount_type=DiscountType.PERCENTAGE, discount_amount=2000, max_uses=1)

    results = _redeem_concurrently(promo_engine, context, "SAVE20", ["a@example.com", "b@example.com"])

    winners = [r for r in results if r.redeemed]
    losers = [r for r in results if not r.redeemed]
    assert len(winners) == 1
    assert winners[0].discount_applied == Money(1000)
    assert losers[0].reason is RejectionReason.MAX_USES_REACHED
    assert _counts(session_factory, "SAVE20") == (1, 1)


def test_per_user_cap_under_concurrency(make_promo, context, promo_engine, session_factory):
    make_promo("TWICE", max_uses_per_user=2)

    results = _redeem_concurrently(promo_engine, context, "TWICE", ["same@example.com"] * 6)

    assert sum(r.redeemed for r in results) == 2
    assert all(r.reason is RejectionReason.USER_MAX_USES_REACHED for r in results if not r.redeemed)
    assert _counts(session_factory, "TWICE") == (2, 2)


def test_per_user_cap_sequential(make_promo, context, promo_engine):
    make_promo("TWICE", max_uses_per_user=2)

    results = [promo_engine.redeem_promo_code("TWICE", context()) for _ in range(3)]

    assert [r.redeemed for r in results] == [True, True, False]
    assert results[2].reason is RejectionReason.USER_MAX_USES_REACHED


def test_commit_rechecks_state_inside_transaction(make_promo, session_factory):
    """The coordinator never trusts an earlier validation."""
    promo = make_promo("LATE", max_uses=1)
    coordinator = RedemptionCoordinator(session_factory, policy=CommitPolicy(max_attempts=1))

    first = coordinator.commit(promo.id, "a@example.com", Money(100), Money(20), now=NOW)
    second = coordinator.commit(promo.id, "b@example.com", Money(100), Money(20), now=NOW)

    assert first.committed
    assert second.reason is RejectionReason.MAX_USES_REACHED


def test_commit_rejects_code_deactivated_after_validation(make_promo, context, session_factory):
    promo = make_promo("GONE")
    coordinator = RedemptionCoordinator(session_factory, policy=CommitPolicy(max_attempts=1))

    session = session_factory()
    session.query(PromoCode).filter_by(id=promo.id).update({PromoCode.is_active: False})
    session.commit()
    session.close()

    result = coordinator.commit(promo.id, "a@example.com", Money(100), Money(20), now=NOW)
    assert result.reason is RejectionReason.INACTIVE
    assert _counts(session_factory, "GONE") == (0, 0)


def _locked_error():
    return OperationalError("UPDATE promo_codes", {}, sqlite3.OperationalError("database is locked"))


def test_contention_is_retried_with_backoff(make_promo, context, session_factory):
    promo = make_promo("RETRY")
    sleeps = []
    coordinator = RedemptionCoordinator(
        session_factory,
        policy=CommitPolicy(max_attempts=4, backoff_base=0.01, backoff_max=1.0),
        sleep=sleeps.append,
    )
    real_attempt = coordinator._attempt
    calls = {"n": 0}

    def flaky(*args):
        calls["n"] += 1
        if calls["n"] < 3:
            raise _locked_error()
        return real_attempt(*args)

    coordinator._attempt = flaky
    result = coordinator.commit(promo.id, "a@example.com", Money(5000), Money(1000), now=NOW)

    assert result.committed
    assert calls["n"] == 3
    assert len(sleeps) == 2
    # exponential: second delay window is twice the first
    assert 0.005 <= sleeps[0] <= 0.01
    assert 0.01 <= sleeps[1] <= 0.02
    assert _counts(session_factory, "RETRY") == (1, 1)


def test_contention_exhaustion_raises(make_promo, session_factory):
    promo = make_promo("BUSY")
    sleeps = []
    coordinator = RedemptionCoordinator(session_factory, policy=CommitPolicy(max_attempts=3), sleep=sleeps.append)

    def always_locked(*args):
        raise _locked_error()

    coordinator._attempt = always_locked
    with pytest.raises(RedemptionContention) as exc_info:
        coordinator.commit(promo.id, "a@example.com", Money(100), Money(10), now=NOW)

    assert exc_info.value.attempts == 3
    assert len(sleeps) == 2


def test_commit_deadline_stops_retries(make_promo, session_factory):
    promo = make_promo("SLOW")
    ticks = iter([0.0, 0.5, 2.0])
    coordinator = RedemptionCoordinator(
        session_factory,
        policy=CommitPolicy(max_attempts=10, commit_timeout=1.0),
        sleep=lambda s: None,
        clock=lambda: next(ticks),
    )

    def always_locked(*args):
        raise _locked_error()

    coordinator._attempt = always_locked
    with pytest.raises(RedemptionContention) as exc_info:
        coordinator.commit(promo.id, "a@example.com", Money(100), Money(10), now=NOW)
    assert exc_info.value.attempts == 2


def test_storage_failure_is_not_a_rejection(make_promo, session_factory):
    promo = make_promo("BROKEN")
    coordinator = RedemptionCoordinator(session_factory, policy=CommitPolicy(max_attempts=5), sleep=lambda s: None)
    calls = {"n": 0}

    def broken(*args):
        calls["n"] += 1
        raise IntegrityError("INSERT", {}, sqlite3.IntegrityError("CHECK constraint failed"))

    coordinator._attempt = broken
    with pytest.raises(StorageError):
        coordinator.commit(promo.id, "a@example.com", Money(100), Money(10), now=NOW)
    assert calls["n"] == 1


def test_is_contention_recognises_postgres_codes():
    class PgError(Exception):
        pgcode = "40P01"

    assert is_contention(OperationalError("x", {}, PgError("deadlock detected")))
    assert is_contention(_locked_error())
    assert not is_contention(OperationalError("x", {}, sqlite3.OperationalError("no such table: promo_codes")))


def test_real_lock_contention_rolls_back_cleanly(make_promo, context, db_url, session_factory):
    promo = make_promo("HELD")
    impatient = make_engine(db_url, connect_args={"timeout": 0.05})
    coordinator = RedemptionCoordinator(
        sessionmaker(bind=impatient, expire_on_commit=False),
        policy=CommitPolicy(max_attempts=2, backoff_base=0.001, backoff_max=0.001),
    )

    holder = session_factory()
    holder.query(PromoCode).filter_by(id=promo.id).first()  # opens BEGIN IMMEDIATE
    try:
        with pytest.raises(RedemptionContention):
            coordinator.commit(promo.id, "a@example.com", Money(100), Money(10), now=NOW)
    finally:
        holder.rollback()
        holder.close()
        impatient.dispose()

    assert _counts(session_factory, "HELD") == (0, 0)


def test_engine_surfaces_contention(make_promo, context, session_factory):
    make_promo("BUSY")

    class StuckCoordinator:
        def commit(self, *args, **kwargs):
            raise RedemptionContention(attempts=5)

    engine = PromoEngine(session_factory, coordinator=StuckCoordinator())
    with pytest.raises(RedemptionContention):
        engine.redeem_promo_code("BUSY", context())


@pytest.mark.parametrize("ledger_row_written", [False, True], ids=["after_increment", "after_ledger_insert"])
def test_cancelled_commit_leaves_no_partial_redemption(monkeypatch, make_promo, session_factory, ledger_row_written):
    promo = make_promo("CANCEL", max_uses=5)
    coordinator = RedemptionCoordinator(session_factory, policy=CommitPolicy(max_attempts=1))
    real_record = ledger.record

    def interrupted(db, **kwargs):
        if ledger_row_written:
            real_record(db, **kwargs)
        raise KeyboardInterrupt

    monkeypatch.setattr(ledger, "record", interrupted)
    with pytest.raises(KeyboardInterrupt):
        coordinator.commit(promo.id, "a@example.com", Money(5000), Money(1000), now=NOW)
    monkeypatch.undo()

    assert _counts(session_factory, "CANCEL") == (0, 0)

    # the code is still fully usable afterwards
    assert coordinator.commit(promo.id, "a@example.com", Money(5000), Money(1000), now=NOW).committed
    assert _counts(session_factory, "CANCEL") == (1, 1)


def test_validation_and_stats_read_while_a_writer_holds_the_lock(make_promo, context, db_url, session_factory):
    make_promo("OPEN")
    impatient = make_engine(db_url, connect_args={"timeout": 0.05})
    engine = PromoEngine(
        sessionmaker(bind=impatient, expire_on_commit=False),
        policy=CommitPolicy(max_attempts=1),
        read_session_factory=sessionmaker(bind=read_only(impatient), expire_on_commit=False),
    )

    holder = session_factory()
    holder.query(PromoCode).first()  # opens BEGIN IMMEDIATE
    try:
        assert engine.validate_promo_code("OPEN", context()).accepted
        assert engine.get_stats(now=NOW).total_codes == 1
        # the commit itself still needs the write lock
        with pytest.raises(RedemptionContention):
            engine.redeem_promo_code("OPEN", context())
    finally:
        holder.rollback()
        holder.close()
        impatient.dispose()

    assert _counts(session_factory, "OPEN") == (0, 0)
