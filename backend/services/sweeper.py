# backend/services/sweeper.py
"""
Background expiry of abandoned checkout sessions.

Runs expire_stale on a fixed interval. Overlapping runs, on this process or
another, are harmless: the update only matches draft rows past their deadline.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config import settings
from services.checkout_sessions import expire_stale

logger = logging.getLogger(__name__)


class SessionExpirySweeper:
    def __init__(self, session_factory: Callable[[], Session], interval_seconds: int = None):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.SWEEPER_INTERVAL_SECONDS

    def run_once(self, now: Optional[datetime] = None) -> int:
        db = self.session_factory()
        try:
            return expire_stale(db, now)
        finally:
            db.close()

    async def run_forever(self) -> None:
        logger.info("Checkout session sweeper started, interval=%ss", self.interval_seconds)
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                # Keep sweeping; the next pass retries whatever failed
                logger.exception("Checkout session sweep failed")
            await asyncio.sleep(self.interval_seconds)
