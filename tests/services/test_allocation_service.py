"""
Tests for the allocation engine.

Covers the claim transaction (eligibility by rank against live stock,
windows, idempotency, consumption of stock and membership), retries on
transient storage conflicts, completion, status reads and the expiry sweep.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.constants.claim import ClaimStatus
from app.constants.errors import ErrorCode
from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InternalError,
    NotFoundError,
)
from app.crud.crud_claim import claim as crud_claim
from app.crud.crud_drop import drop as crud_drop
from app.crud.crud_waitlist_entry import waitlist_entry
from app.models.claim import Claim
from app.services.allocation_service import allocation_service, is_retryable
from tests.utils.drop import create_random_drop
from tests.utils.user import create_random_user


def _waitlisted_users(db, drop, scores, now):
    """One user per score, joined a second apart in the given order."""
    users = []
    for index, score in enumerate(scores):
        user = create_random_user(db)
        waitlist_entry.create_entry(
            db,
            user_id=user.id,
            drop_id=drop.id,
            joined_at=now - timedelta(hours=3) + timedelta(seconds=index),
            priority_score=score,
        )
        users.append(user)
    db.commit()
    return users


def _claim(db, seed, user, drop, now=None):
    return allocation_service.claim_drop(db, user_id=user.id, drop_id=drop.id, seed=seed, now=now)


class TestClaimDrop:

    def test_claim_consumes_stock_and_membership(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", total_stock=3, now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)

        result = _claim(db_session, seed, user, drop, now)

        assert result.is_new is True
        assert result.claim.status == ClaimStatus.PENDING
        assert result.claim.claim_code.startswith("CLAIM-")
        assert result.claim.expires_at == now + timedelta(hours=24)
        assert result.drop.claimed_stock == 1
        assert waitlist_entry.get_by_user_and_drop(db_session, user_id=user.id, drop_id=drop.id) is None

    def test_claim_is_idempotent(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", total_stock=3, now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)

        first = _claim(db_session, seed, user, drop, now)
        second = _claim(db_session, seed, user, drop, now + timedelta(minutes=1))

        assert second.is_new is False
        assert second.claim.id == first.claim.id
        assert second.claim.claim_code == first.claim.claim_code
        assert crud_drop.get(db_session, id=drop.id).claimed_stock == 1
        assert db_session.query(Claim).filter(Claim.drop_id == drop.id).count() == 1

    def test_rank_at_available_stock_can_claim(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", total_stock=2, now=now)
        _, second, third = _waitlisted_users(db_session, drop, [50, 40, 30], now)

        assert _claim(db_session, seed, second, drop, now).is_new is True

        # One unit left and the rank-1 user still waiting: rank 2 is now beyond stock
        with pytest.raises(ForbiddenError) as exc_info:
            _claim(db_session, seed, third, drop, now)
        assert exc_info.value.code == ErrorCode.NOT_ELIGIBLE

    def test_rank_beyond_available_stock_is_not_eligible(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", total_stock=2, now=now)
        _, _, third = _waitlisted_users(db_session, drop, [50, 40, 30], now)

        with pytest.raises(ForbiddenError) as exc_info:
            _claim(db_session, seed, third, drop, now)

        assert exc_info.value.code == ErrorCode.NOT_ELIGIBLE
        assert exc_info.value.details == {"position": 3, "available_stock": 2}
        assert crud_drop.get(db_session, id=drop.id).claimed_stock == 0

    def test_top_ranks_claim_then_drop_sells_out(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", total_stock=2, now=now)
        first, second, third = _waitlisted_users(db_session, drop, [50, 40, 30], now)

        assert _claim(db_session, seed, first, drop, now).is_new is True
        assert _claim(db_session, seed, second, drop, now).is_new is True

        with pytest.raises(ConflictError) as exc_info:
            _claim(db_session, seed, third, drop, now)

        assert exc_info.value.code == ErrorCode.DROP_SOLD_OUT
        assert crud_drop.get(db_session, id=drop.id).claimed_stock == 2

    def test_available_stock_is_recomputed_per_attempt(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", total_stock=2, now=now)
        first, _, _, fourth = _waitlisted_users(db_session, drop, [50, 40, 30, 20], now)

        with pytest.raises(ForbiddenError) as exc_info:
            _claim(db_session, seed, fourth, drop, now)
        assert exc_info.value.details == {"position": 4, "available_stock": 2}

        _claim(db_session, seed, first, drop, now)

        with pytest.raises(ForbiddenError) as exc_info:
            _claim(db_session, seed, fourth, drop, now)
        assert exc_info.value.details == {"position": 3, "available_stock": 1}

    def test_sold_out_retry_returns_existing_claim(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", total_stock=1, now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)
        first = _claim(db_session, seed, user, drop, now)

        retry = _claim(db_session, seed, user, drop, now)

        assert retry.is_new is False
        assert retry.claim.id == first.claim.id

    def test_not_in_waitlist(self, db_session, seed):
        drop = create_random_drop(db_session, phase="claiming")
        user = create_random_user(db_session)

        with pytest.raises(ForbiddenError) as exc_info:
            _claim(db_session, seed, user, drop)

        assert exc_info.value.code == ErrorCode.NOT_IN_WAITLIST

    def test_missing_drop(self, db_session, seed):
        user = create_random_user(db_session)

        with pytest.raises(NotFoundError) as exc_info:
            allocation_service.claim_drop(
                db_session, user_id=user.id, drop_id="drp_000000000000", seed=seed
            )

        assert exc_info.value.code == ErrorCode.DROP_NOT_FOUND

    def test_inactive_drop(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", is_active=False, now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)

        with pytest.raises(ConflictError) as exc_info:
            _claim(db_session, seed, user, drop, now)

        assert exc_info.value.code == ErrorCode.DROP_NOT_ACTIVE

    def test_claim_before_window_opens(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="waitlist", now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)

        with pytest.raises(ConflictError) as exc_info:
            _claim(db_session, seed, user, drop, drop.claim_window_start - timedelta(microseconds=1))

        assert exc_info.value.code == ErrorCode.CLAIM_WINDOW_NOT_STARTED

    def test_claim_at_window_end(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)

        with pytest.raises(ConflictError) as exc_info:
            _claim(db_session, seed, user, drop, drop.claim_window_end)

        assert exc_info.value.code == ErrorCode.CLAIM_WINDOW_ENDED

    def test_window_is_enforced_for_existing_claims(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)
        _claim(db_session, seed, user, drop, now)

        with pytest.raises(ConflictError) as exc_info:
            _claim(db_session, seed, user, drop, drop.claim_window_end + timedelta(minutes=1))

        assert exc_info.value.code == ErrorCode.CLAIM_WINDOW_ENDED


class TestClaimRetries:

    def test_transient_conflict_is_retried(self, db_session, seed):
        now = datetime.now(timezone.utc)
        drop = create_random_drop(db_session, phase="claiming", now=now)
        (user,) = _waitlisted_users(db_session, drop, [1000], now)
        real_get_for_update = crud_drop.get_for_update
        calls = []

        def locked_once(db, *, drop_id):
            calls.append(drop_id)
            if len(calls) == 1:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return real_get_for_update(db, drop_id=drop_id)

        with patch.object(crud_drop, "get_for_update", side_effect=locked_once):
            result = _claim(db_session, seed, user, drop, now)

        assert len(calls) == 2
        assert result.is_new is True

    def test_gives_up_after_max_attempts(self, db_session, seed, monkeypatch):
        monkeypatch.setattr(settings, "CLAIM_MAX_ATTEMPTS", 2)
        locked = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(crud_drop, "get_for_update", side_effect=locked) as get_for_update:
            with pytest.raises(InternalError) as exc_info:
                allocation_service.claim_drop(
                    db_session, user_id="usr_x", drop_id="drp_000000000000", seed=seed
                )

        assert get_for_update.call_count == 2
        assert exc_info.value.code == ErrorCode.TRANSACTION_FAILED
        assert exc_info.value.details == {"attempts": 2}

    def test_non_transient_storage_error_is_not_retried(self, db_session, seed):
        broken = OperationalError("SELECT", {}, Exception("no such table: drops"))

        with patch.object(crud_drop, "get_for_update", side_effect=broken) as get_for_update:
            with pytest.raises(InternalError):
                allocation_service.claim_drop(
                    db_session, user_id="usr_x", drop_id="drp_000000000000", seed=seed
                )

        assert get_for_update.call_count == 1

    def test_is_retryable_recognizes_postgres_sqlstates(self):
        class SerializationFailure(Exception):
            pgcode = "40001"

        class UniqueViolation(Exception):
            pgcode = "23505"

        assert is_retryable(OperationalError("UPDATE", {}, SerializationFailure()))
        assert not is_retryable(OperationalError("UPDATE", {}, UniqueViolation()))


class TestCompleteClaim:

    def _pending_claim(self, db, seed, *, claimed_at):
        drop = create_random_drop(db, phase="claiming", now=claimed_at)
        (user,) = _waitlisted_users(db, drop, [1000], claimed_at)
        result = _claim(db, seed, user, drop, claimed_at)
        return user, drop, result.claim

    def test_complete_pending_claim(self, db_session, seed):
        user, drop, claim = self._pending_claim(db_session, seed, claimed_at=datetime.now(timezone.utc))

        completed = allocation_service.complete_claim(db_session, user_id=user.id, drop_id=drop.id)

        assert completed.id == claim.id
        assert completed.status == ClaimStatus.COMPLETED

    def test_complete_is_idempotent(self, db_session, seed):
        user, drop, _ = self._pending_claim(db_session, seed, claimed_at=datetime.now(timezone.utc))
        allocation_service.complete_claim(db_session, user_id=user.id, drop_id=drop.id)

        again = allocation_service.complete_claim(db_session, user_id=user.id, drop_id=drop.id)

        assert again.status == ClaimStatus.COMPLETED

    def test_complete_after_expiry_marks_claim_expired(self, db_session, seed):
        claimed_at = datetime.now(timezone.utc) - timedelta(hours=25)
        user, drop, claim = self._pending_claim(db_session, seed, claimed_at=claimed_at)

        with pytest.raises(ExpiredError) as exc_info:
            allocation_service.complete_claim(db_session, user_id=user.id, drop_id=drop.id)

        assert exc_info.value.code == ErrorCode.CLAIM_EXPIRED
        db_session.expire_all()
        assert crud_claim.get(db_session, id=claim.id).status == ClaimStatus.EXPIRED

    def test_complete_expired_claim_keeps_failing(self, db_session, seed):
        claimed_at = datetime.now(timezone.utc) - timedelta(hours=25)
        user, drop, _ = self._pending_claim(db_session, seed, claimed_at=claimed_at)
        with pytest.raises(ExpiredError):
            allocation_service.complete_claim(db_session, user_id=user.id, drop_id=drop.id)

        with pytest.raises(ExpiredError):
            allocation_service.complete_claim(db_session, user_id=user.id, drop_id=drop.id)

    def test_complete_without_claim(self, db_session):
        drop = create_random_drop(db_session, phase="claiming")
        user = create_random_user(db_session)

        with pytest.raises(NotFoundError) as exc_info:
            allocation_service.complete_claim(db_session, user_id=user.id, drop_id=drop.id)

        assert exc_info.value.code == ErrorCode.CLAIM_NOT_FOUND


class TestClaimReads:

    def test_status_without_claim(self, db_session):
        drop = create_random_drop(db_session, phase="claiming")

        status = allocation_service.get_claim_status(db_session, user_id="usr_x", drop_id=drop.id)

        assert status.has_claim is False
        assert status.claim is None

    def test_status_reports_overdue_pending_claim_as_expired(self, db_session, seed):
        claimed_at = datetime.now(timezone.utc) - timedelta(hours=25)
        drop = create_random_drop(db_session, phase="claiming", now=claimed_at)
        (user,) = _waitlisted_users(db_session, drop, [1000], claimed_at)
        result = _claim(db_session, seed, user, drop, claimed_at)

        status = allocation_service.get_claim_status(db_session, user_id=user.id, drop_id=drop.id)

        assert status.has_claim is True
        assert status.claim.status == ClaimStatus.EXPIRED
        assert status.claim.is_expired is True
        # Reads never write: the stored row is untouched until the sweep
        db_session.expire_all()
        assert crud_claim.get(db_session, id=result.claim.id).status == ClaimStatus.PENDING

    def test_list_user_claims_newest_first_with_drops(self, db_session, seed):
        now = datetime.now(timezone.utc)
        user = create_random_user(db_session)
        drops = [create_random_drop(db_session, phase="claiming", now=now) for _ in range(2)]
        for drop in drops:
            waitlist_entry.create_entry(
                db_session, user_id=user.id, drop_id=drop.id,
                joined_at=now - timedelta(hours=3), priority_score=1000
            )
        db_session.commit()
        _claim(db_session, seed, user, drops[0], now - timedelta(minutes=5))
        _claim(db_session, seed, user, drops[1], now)

        claims = allocation_service.list_user_claims(db_session, user_id=user.id)

        assert [claim.drop.id for claim in claims] == [drops[1].id, drops[0].id]
        assert all(claim.status == ClaimStatus.PENDING for claim in claims)


class TestCleanupExpiredClaims:

    def test_sweep_expires_overdue_claims_without_returning_stock(self, db_session, seed):
        now = datetime.now(timezone.utc)
        claimed_at = now - timedelta(hours=25)
        old_drop = create_random_drop(db_session, phase="claiming", total_stock=2, now=claimed_at)
        new_drop = create_random_drop(db_session, phase="claiming", total_stock=2, now=now)
        (old_user,) = _waitlisted_users(db_session, old_drop, [1000], claimed_at)
        (new_user,) = _waitlisted_users(db_session, new_drop, [1000], now)
        overdue = _claim(db_session, seed, old_user, old_drop, claimed_at)
        fresh = _claim(db_session, seed, new_user, new_drop, now)

        updated = allocation_service.cleanup_expired_claims(db_session)

        assert updated == 1
        db_session.expire_all()
        assert crud_claim.get(db_session, id=overdue.claim.id).status == ClaimStatus.EXPIRED
        assert crud_claim.get(db_session, id=fresh.claim.id).status == ClaimStatus.PENDING
        # The expired unit stays consumed
        assert crud_drop.get(db_session, id=old_drop.id).claimed_stock == 1

    def test_sweep_is_safe_to_rerun(self, db_session, seed):
        claimed_at = datetime.now(timezone.utc) - timedelta(hours=25)
        drop = create_random_drop(db_session, phase="claiming", now=claimed_at)
        (user,) = _waitlisted_users(db_session, drop, [1000], claimed_at)
        _claim(db_session, seed, user, drop, claimed_at)

        assert allocation_service.cleanup_expired_claims(db_session) == 1
        assert allocation_service.cleanup_expired_claims(db_session) == 0
