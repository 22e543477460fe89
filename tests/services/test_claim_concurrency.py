"""
Concurrent claims against one drop, each on its own session and thread,
the way request handlers run them.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from app.constants.errors import ErrorCode
from app.core.exceptions import DropAllocationError
from app.crud.crud_drop import drop as crud_drop
from app.crud.crud_waitlist_entry import waitlist_entry
from app.models.claim import Claim
from app.services.allocation_service import allocation_service
from tests.utils.drop import create_random_drop
from tests.utils.user import create_random_user

STOCK = 3
CONTENDERS = 8


def _claim_in_own_session(session_factory, seed, user_id, drop_id):
    db = session_factory()
    try:
        result = allocation_service.claim_drop(db, user_id=user_id, drop_id=drop_id, seed=seed)
        return result.is_new
    except DropAllocationError as e:
        return e.code
    finally:
        db.close()


def test_concurrent_claims_go_to_top_ranked_users(db_session, session_factory, seed):
    now = datetime.now(timezone.utc)
    drop = create_random_drop(db_session, phase="claiming", total_stock=STOCK, now=now)
    user_ids = []
    for index in range(CONTENDERS):
        user = create_random_user(db_session)
        waitlist_entry.create_entry(
            db_session,
            user_id=user.id,
            drop_id=drop.id,
            joined_at=now - timedelta(hours=3) + timedelta(seconds=index),
            priority_score=1000 - index,
        )
        user_ids.append(user.id)
    db_session.commit()
    drop_id = drop.id
    # No open transaction may hold the database while the workers run
    db_session.close()

    with ThreadPoolExecutor(max_workers=CONTENDERS) as pool:
        outcomes = list(pool.map(
            lambda user_id: _claim_in_own_session(session_factory, seed, user_id, drop_id),
            user_ids,
        ))

    winners = [user_id for user_id, outcome in zip(user_ids, outcomes) if outcome is True]
    losers = [outcome for outcome in outcomes if outcome is not True]
    stored = crud_drop.get(db_session, id=drop_id)
    claim_rows = db_session.query(Claim).filter(Claim.drop_id == drop_id).count()

    # Scores are strictly ordered, so the top STOCK users win whatever the interleaving
    assert sorted(winners) == sorted(user_ids[:STOCK])
    assert set(losers) <= {ErrorCode.DROP_SOLD_OUT, ErrorCode.NOT_ELIGIBLE}
    assert len(losers) == CONTENDERS - STOCK
    assert stored.claimed_stock == STOCK
    assert claim_rows == STOCK


def test_concurrent_retries_of_one_user_yield_one_claim(db_session, session_factory, seed):
    now = datetime.now(timezone.utc)
    drop = create_random_drop(db_session, phase="claiming", total_stock=STOCK, now=now)
    user = create_random_user(db_session)
    waitlist_entry.create_entry(
        db_session, user_id=user.id, drop_id=drop.id,
        joined_at=now - timedelta(hours=3), priority_score=1000
    )
    db_session.commit()
    drop_id, user_id = drop.id, user.id
    db_session.close()

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(
            lambda _: _claim_in_own_session(session_factory, seed, user_id, drop_id),
            range(4),
        ))

    assert outcomes.count(True) == 1
    assert outcomes.count(False) == 3
    assert db_session.query(Claim).filter(Claim.user_id == user_id).count() == 1
    assert crud_drop.get(db_session, id=drop_id).claimed_stock == outcomes.count(True)
