"""
Daily postcard quota per sender email.

Counts usage rows inside the current UTC calendar day. Creator (allow-listed)
emails are always allowed and never recorded. The count-then-insert sequence
is not transactional: two sends racing at the quota boundary may both pass,
which is acceptable for a soft daily cap.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from domain.models import UNLIMITED, RateDecision
from repositories.usage import UsageRepository
from settings import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def utc_day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[start of now's UTC day, start of the next UTC day) as naive UTC datetimes."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class RateGate:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        allowlist: Iterable[str] = (),
        daily_quota: int = 3,
        clock: Clock = _utc_now,
        repository: Optional[UsageRepository] = None,
    ):
        self._session_factory = session_factory
        self.allowlist = frozenset(normalize_email(e) for e in allowlist if e)
        self.daily_quota = daily_quota
        self._clock = clock
        self._repo = repository or UsageRepository()

    def is_allowlisted(self, email: str) -> bool:
        return normalize_email(email) in self.allowlist

    def check_allowed(self, email: str) -> RateDecision:
        """
        Decide whether the sender may send another postcard today.

        Fails closed: if the usage store cannot be read, the send is denied and
        the decision carries the store error for callers that must report it.
        """
        if self.is_allowlisted(email):
            return RateDecision(allowed=True, remaining=UNLIMITED, is_creator=True)

        key = normalize_email(email)
        start, end = utc_day_bounds(self._clock())
        try:
            with self._session_factory() as session:
                used = self._repo.count_between(session, key, start, end)
        except SQLAlchemyError as exc:
            logger.exception("[rate-gate] usage lookup failed for %s; denying", key)
            return RateDecision(allowed=False, remaining=0, store_error=str(exc))

        remaining = max(0, self.daily_quota - used)
        logger.debug("[rate-gate] %s used=%s remaining=%s", key, used, remaining)
        return RateDecision(allowed=remaining > 0, remaining=remaining, used_today=used)

    def record_usage(self, email: str) -> None:
        """Record one delivered postcard. Best-effort: failures are logged only."""
        if self.is_allowlisted(email):
            return
        key = normalize_email(email)
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            with self._session_factory() as session:
                self._repo.add(session, key, now)
        except SQLAlchemyError:
            logger.exception("[rate-gate] failed to record usage for %s", key)


_default_rate_gate: Optional[RateGate] = None


def get_default_rate_gate() -> RateGate:
    global _default_rate_gate
    if _default_rate_gate is None:
        from db import SessionLocal

        _default_rate_gate = RateGate(
            SessionLocal,
            allowlist=settings.CREATOR_EMAILS,
            daily_quota=settings.DAILY_POSTCARD_QUOTA,
        )
    return _default_rate_gate
