"""
EntitlementStore: the single write path for the paid flag.

The flag lives in two projections with no shared transaction:

- ``user_profiles`` (A): flag, subscriber flag, expiry, Stripe customer id.
- ``users`` (B): flag only; the access gate reads this table.

``set_paid`` runs both "update where exists" statements independently.
Flag writes are monotonic (always true) and the expiry is only ever moved
forward, so webhook retries, manual confirmations and polling can race or
repeat without ever shortening an entitlement.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, case, select, update, insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from curlara.core.database import (
    get_db_session,
    get_engine,
    payment_event_outcomes,
    user_profiles,
    users,
)
from curlara.core.errors import ProjectionWriteError
from curlara.core.logging import log_event
from curlara.features.entitlements.models import (
    EntitlementWriteResult,
    ProjectionOutcome,
)

logger = logging.getLogger("curlara")

PROFILE_PROJECTION = "user_profiles"
ACCESS_PROJECTION = "users"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; everything here is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EntitlementStore:
    def __init__(self, engine: Optional[Engine] = None, period: timedelta = timedelta(days=30)):
        self._engine = engine
        self.period = period

    @property
    def engine(self) -> Engine:
        return self._engine or get_engine()

    # ------------------------------------------------------------------
    # State writer
    # ------------------------------------------------------------------

    def set_paid(
        self,
        subject_id: str,
        email: Optional[str] = None,
        customer_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EntitlementWriteResult:
        """Grant the paid entitlement on both projections.

        Args:
            subject_id: Subject id (required key for both projections)
            email: Secondary key, only used when the id-keyed write to
                ``users`` matches nothing
            customer_id: Stripe customer id to link on the profile
            now: Clock override for tests

        Returns:
            EntitlementWriteResult with per-projection outcomes. A failure in
            one projection is captured there, never raised.
        """
        now = as_utc(now) or utcnow()
        candidate_expiry = now + self.period

        profile = self._update_profile(subject_id, candidate_expiry, customer_id)
        access = self._update_access(subject_id, email)

        expires_at = None
        if profile.updated:
            try:
                expires_at = self.read_expiry(subject_id)
            except SQLAlchemyError as e:
                logger.warning(f"Could not read back expiry for {subject_id}: {e}")
        result = EntitlementWriteResult(
            subject_id=subject_id,
            profile=profile,
            access=access,
            expires_at=expires_at or (candidate_expiry if profile.updated else None),
        )

        log_event(
            "info" if result.entitled else "warning",
            "entitlement.write",
            subject_id=subject_id,
            extra={
                "outcome": result.outcome,
                "profile_updated": profile.updated,
                "access_updated": access.updated,
                "access_key": access.key,
                "expires_at": result.expires_at.isoformat() if result.expires_at else None,
            },
        )
        return result

    def _update_profile(self, subject_id: str, candidate_expiry: datetime, customer_id: Optional[str]) -> ProjectionOutcome:
        outcome = ProjectionOutcome(projection=PROFILE_PROJECTION, key="id")
        current = user_profiles.c.subscription_end_date
        values = {
            "has_paid": True,
            "is_subscriber": True,
            # Never move the expiry backwards.
            "subscription_end_date": case(
                (and_(current.is_not(None), current > candidate_expiry), current),
                else_=candidate_expiry,
            ),
        }
        if customer_id:
            values["stripe_customer_id"] = customer_id
        try:
            with get_db_session(self.engine) as session:
                res = session.execute(
                    update(user_profiles)
                    .where(user_profiles.c.id == subject_id)
                    .values(**values)
                )
                outcome.matched = res.rowcount or 0
        except SQLAlchemyError as e:
            outcome.error = ProjectionWriteError(
                f"Failed to update {PROFILE_PROJECTION}: {e.__class__.__name__}",
                hint=f"{PROFILE_PROJECTION} write failed for subject {subject_id}",
            )
            log_event(
                "error",
                "entitlement.projection_write_failed",
                subject_id=subject_id,
                error_code=ProjectionWriteError.code,
                extra={"projection": PROFILE_PROJECTION, "error": str(e)},
            )
            return outcome
        outcome.updated = outcome.matched > 0
        return outcome

    def _update_access(self, subject_id: str, email: Optional[str]) -> ProjectionOutcome:
        outcome = self._update_access_by(users.c.id, subject_id, key="id")
        if outcome.updated or not email:
            return outcome

        log_event(
            "info",
            "entitlement.access_email_fallback",
            subject_id=subject_id,
            extra={"reason": "error" if outcome.error else "no_row"},
        )
        fallback = self._update_access_by(users.c.email, email, key="email")
        if fallback.updated:
            return fallback
        # Keep the original error visible when the fallback matched nothing too.
        if fallback.error is None and outcome.error is not None:
            fallback.error = outcome.error
        return fallback

    def _update_access_by(self, column, value: str, key: str) -> ProjectionOutcome:
        outcome = ProjectionOutcome(projection=ACCESS_PROJECTION, key=key)
        try:
            with get_db_session(self.engine) as session:
                res = session.execute(
                    update(users).where(column == value).values(has_paid=True)
                )
                outcome.matched = res.rowcount or 0
        except SQLAlchemyError as e:
            outcome.error = ProjectionWriteError(
                f"Failed to update {ACCESS_PROJECTION} by {key}: {e.__class__.__name__}",
                hint=f"{ACCESS_PROJECTION} may be missing in this deployment",
            )
            log_event(
                "error",
                "entitlement.projection_write_failed",
                error_code=ProjectionWriteError.code,
                extra={"projection": ACCESS_PROJECTION, "key": key, "error": str(e)},
            )
            return outcome
        outcome.updated = outcome.matched > 0
        return outcome

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_subject_by_email(self, email: str) -> Optional[str]:
        """Look up a subject id in the profile projection by email."""
        with get_db_session(self.engine) as session:
            row = session.execute(
                select(user_profiles.c.id).where(user_profiles.c.email == email).limit(1)
            ).fetchone()
        return row[0] if row else None

    def read_access_flag(self, subject_id: str) -> Optional[bool]:
        """Projection B flag for the gate; None when no row exists.

        Raises SQLAlchemyError on backend failure; the gate fails closed.
        """
        with get_db_session(self.engine) as session:
            row = session.execute(
                select(users.c.has_paid).where(users.c.id == subject_id)
            ).fetchone()
        return row[0] if row else None

    def read_expiry(self, subject_id: str) -> Optional[datetime]:
        with get_db_session(self.engine) as session:
            row = session.execute(
                select(user_profiles.c.subscription_end_date).where(user_profiles.c.id == subject_id)
            ).fetchone()
        return as_utc(row[0]) if row else None

    def read_profile(self, subject_id: str) -> Optional[dict]:
        with get_db_session(self.engine) as session:
            row = session.execute(
                select(user_profiles).where(user_profiles.c.id == subject_id)
            ).mappings().fetchone()
        if not row:
            return None
        profile = dict(row)
        profile["subscription_end_date"] = as_utc(profile.get("subscription_end_date"))
        return profile

    # ------------------------------------------------------------------
    # Outcome ledger
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        *,
        source: str,
        outcome: str,
        event_id: Optional[str] = None,
        event_type: Optional[str] = None,
        subject_id: Optional[str] = None,
        result: Optional[EntitlementWriteResult] = None,
        needs_follow_up: bool = False,
        detail: Optional[str] = None,
    ) -> bool:
        """Best-effort insert into payment_event_outcomes; returns success."""
        try:
            with get_db_session(self.engine) as session:
                session.execute(
                    insert(payment_event_outcomes).values(
                        event_id=event_id,
                        event_type=event_type,
                        source=source,
                        subject_id=subject_id,
                        outcome=outcome,
                        profile_updated=bool(result and result.profile.updated),
                        access_updated=bool(result and result.access.updated),
                        needs_follow_up=needs_follow_up,
                        detail=detail,
                        recorded_at=utcnow(),
                    )
                )
            return True
        except SQLAlchemyError as e:
            log_event(
                "error",
                "entitlement.outcome_record_failed",
                event_id=event_id,
                subject_id=subject_id,
                extra={"outcome": outcome, "error": str(e)},
            )
            return False

    def list_follow_ups(self, limit: int = 50) -> list[dict]:
        with get_db_session(self.engine) as session:
            rows = session.execute(
                select(payment_event_outcomes)
                .where(payment_event_outcomes.c.needs_follow_up.is_(True))
                .order_by(payment_event_outcomes.c.recorded_at.desc(), payment_event_outcomes.c.id.desc())
                .limit(limit)
            ).mappings().fetchall()
        return [dict(row) for row in rows]
