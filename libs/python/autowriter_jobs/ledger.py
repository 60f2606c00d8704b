"""Word-credit checks and idempotent debits."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from autowriter_schemas import CreditLedger

from .exceptions import InsufficientCreditsError
from .store import StoreSession

logger = logging.getLogger(__name__)


def current_period(now: datetime) -> str:
    return now.strftime("%Y-%m")


def ensure_credits(session: StoreSession, user_id: UUID, *, now: datetime) -> Optional[CreditLedger]:
    """Fail fast when the owner has nothing left to spend.

    Users without a ledger row for the period are not metered.

    Raises:
        InsufficientCreditsError: If the ledger exists and is exhausted.
    """

    ledger = session.get_ledger(user_id, current_period(now))
    if ledger is not None and ledger.available <= 0:
        raise InsufficientCreditsError(user_id, ledger.available)
    return ledger


def debit_words(
    session: StoreSession,
    *,
    user_id: UUID,
    job_id: UUID,
    words: int,
    now: datetime,
) -> int:
    """Charge ``words`` against the monthly allowance, then the overflow balance.

    A job is charged at most once; repeated calls for the same ``job_id``
    return 0. The charge is clamped to what the ledger holds. Returns the
    number of words actually charged.
    """

    if session.has_debit(job_id):
        return 0
    words = max(words, 0)
    charged = 0
    ledger = session.get_ledger(user_id, current_period(now), for_update=True)
    if ledger is not None and words:
        from_monthly = min(words, ledger.monthly_remaining)
        from_overflow = min(words - from_monthly, ledger.overflow_balance)
        ledger.used_this_period += from_monthly
        ledger.overflow_balance -= from_overflow
        charged = from_monthly + from_overflow
        session.save_ledger(ledger)
        if charged < words:
            logger.warning(
                "Credit ledger exhausted during debit",
                extra={"job_id": str(job_id), "requested": words, "charged": charged},
            )
    session.record_debit(job_id, user_id, charged, now=now)
    return charged
