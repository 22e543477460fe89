# app/services/priority_scorer.py
"""
Fairness-weighted priority scoring for waitlist joins.

    score = base
            + (signup_latency_ms  mod A)
            + (account_age_days   mod B)
            - (rapid_action_count mod C)

clamped at 0. A, B and C come from the fairness seed. The modulo terms add
small, bounded jitter so simultaneous joiners are not ordered by raw latency
alone, while older, non-bursty accounts still come out slightly ahead.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.seed import Coefficients, SeedData
from app.crud.crud_user import user as crud_user
from app.crud.crud_waitlist_entry import waitlist_entry
from app.db.types import as_utc
from app.models.drop import Drop

logger = logging.getLogger(__name__)

RAPID_ACTION_WINDOW = timedelta(hours=1)


def score(
    base: int,
    signup_latency_ms: int,
    account_age_days: int,
    rapid_action_count: int,
    coefficients: Coefficients,
) -> int:
    value = (
        base
        + (signup_latency_ms % coefficients.a)
        + (account_age_days % coefficients.b)
        - (rapid_action_count % coefficients.c)
    )
    return max(0, value)


def signup_latency_ms(drop_start: datetime, joined_at: datetime) -> int:
    """Milliseconds between drop start and the join, floored at 0."""
    elapsed = as_utc(joined_at) - as_utc(drop_start)
    return max(0, int(elapsed.total_seconds() * 1000))


def account_age_days(created_at: datetime, joined_at: datetime) -> int:
    """Whole days between account creation and the join."""
    return (as_utc(joined_at) - as_utc(created_at)).days


class ScoringUnavailable(Exception):
    pass


def calculate_priority_score(
    db: Session,
    *,
    user_id: str,
    drop: Drop,
    joined_at: datetime,
    seed: Optional[SeedData],
) -> int:
    """
    Score a join in progress. Never raises: any failure while gathering the
    signals yields DEFAULT_PRIORITY_SCORE so the join itself can go ahead.
    """
    try:
        if seed is None:
            raise ScoringUnavailable("fairness seed has not been generated")

        # Savepoint so a failed read cannot abort the caller's transaction
        with db.begin_nested():
            account = crud_user.get(db, id=user_id)
            if account is None:
                raise ScoringUnavailable(f"user {user_id} not found")

            # Previous joins inside the trailing hour, plus this one
            rapid_actions = waitlist_entry.count_recent_joins(
                db,
                user_id=user_id,
                since=joined_at - RAPID_ACTION_WINDOW,
                until=joined_at,
            ) + 1

        return score(
            settings.BASE_PRIORITY_SCORE,
            signup_latency_ms(drop.start_date, joined_at),
            account_age_days(account.created_at, joined_at),
            rapid_actions,
            seed.coefficients,
        )

    except Exception as e:
        logger.warning(
            f"Priority scoring failed for user {user_id} on drop {drop.id}, "
            f"using default score: {e}"
        )
        return settings.DEFAULT_PRIORITY_SCORE
