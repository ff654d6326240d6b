"""
Durable store for OTP challenges.

All state transitions that can race under concurrent requests
(supersede-then-insert, failed-attempt increment, consumption) are
issued as single UPDATE statements so the database arbitrates them.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update, select, case, bindparam, DateTime
from sqlalchemy.orm import Session

from ...models import OTPChallenge

logger = logging.getLogger(__name__)


class ChallengeStore:
    def __init__(self, db: Session):
        self.db = db

    def latest_for_phone(self, phone: str, purpose: Optional[str] = None) -> Optional[OTPChallenge]:
        """
        Most recent challenge for a phone, optionally restricted to one purpose.

        Ties on created_at are broken by expires_at so a superseding row
        always sorts ahead of the row it expired.
        """
        query = self.db.query(OTPChallenge).filter(OTPChallenge.phone_e164 == phone)
        if purpose is not None:
            query = query.filter(OTPChallenge.purpose == purpose)
        return query.order_by(OTPChallenge.created_at.desc(), OTPChallenge.expires_at.desc()).first()

    def supersede_and_insert(
        self,
        phone: str,
        purpose: str,
        code_hash: str,
        now: datetime,
        ttl: timedelta,
    ) -> OTPChallenge:
        """
        Expire every active challenge for the phone and insert a new one
        in the same transaction.
        """
        try:
            self.db.execute(
                update(OTPChallenge)
                .where(OTPChallenge.phone_e164 == phone, OTPChallenge.expires_at > now)
                .values(expires_at=now)
                .execution_options(synchronize_session=False)
            )
            challenge = OTPChallenge(
                phone_e164=phone,
                purpose=purpose,
                code_hash=code_hash,
                expires_at=now + ttl,
                attempts=0,
                last_sent_at=now,
                locked_until=None,
                created_at=now,
            )
            self.db.add(challenge)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return challenge

    def register_failed_attempt(
        self,
        challenge_id: str,
        max_attempts: int,
        locked_until: datetime,
    ) -> int:
        """
        Atomically increment attempts, locking the challenge when the new
        count reaches max_attempts.

        Returns:
            The attempts value after the increment
        """
        lock_param = bindparam("lock_until", locked_until, type_=DateTime())
        self.db.execute(
            update(OTPChallenge)
            .where(OTPChallenge.id == challenge_id)
            .values(
                attempts=OTPChallenge.attempts + 1,
                locked_until=case(
                    (OTPChallenge.attempts + 1 >= max_attempts, lock_param),
                    else_=OTPChallenge.locked_until,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return self.db.execute(
            select(OTPChallenge.attempts).where(OTPChallenge.id == challenge_id)
        ).scalar_one()

    def relock(self, challenge_id: str, locked_until: datetime) -> None:
        """Re-stamp the lock on a challenge that is already at max attempts."""
        self.db.execute(
            update(OTPChallenge)
            .where(OTPChallenge.id == challenge_id)
            .values(locked_until=locked_until)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def consume(self, challenge_id: str, now: datetime) -> bool:
        """
        Mark a challenge consumed by expiring it.

        Only succeeds while the row is still active, so two concurrent
        correct submissions cannot both consume it.
        """
        result = self.db.execute(
            update(OTPChallenge)
            .where(OTPChallenge.id == challenge_id, OTPChallenge.expires_at > now)
            .values(expires_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        consumed = result.rowcount == 1
        if not consumed:
            logger.info(f"[OTP] Challenge {challenge_id} already consumed or expired")
        return consumed
