"""
Background challenge sweeper.

Periodically advances AI Sage opponents, resolves challenges whose window has
ended and finishes balance movements an interrupted request left behind.
"""

import logging
import asyncio
from datetime import datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ChallengeSweeper:
    """
    Background task driving time-based challenge transitions.

    Nothing in a request path depends on it: every step it runs is also
    safe to run by hand or from several processes at once.
    """

    def __init__(self, challenge_service, sweep_interval: int = 300):
        """
        Initialize challenge sweeper.

        Args:
            challenge_service: ChallengeService to drive
            sweep_interval: Seconds between sweeps
        """
        self.challenge_service = challenge_service
        self.sweep_interval = sweep_interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the background sweep task."""
        if self._running:
            logger.warning("Challenge sweeper is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Challenge sweeper started (interval: {self.sweep_interval}s)")

    async def stop(self):
        """Stop the background sweep task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Challenge sweeper stopped")

    async def _sweep_loop(self):
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error sweeping challenges: {e}", exc_info=True)

            await asyncio.sleep(self.sweep_interval)

    async def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        One sweep: AI progress, then due resolutions, then reconciliation

        Returns:
            {'ai_updated': int, 'resolved': int, 'reconciled': int}
        """
        ai_updated = await self.challenge_service.tick_ai_challenges(now)
        resolved = await self.challenge_service.resolve_due_challenges(now)
        reconciled = await self.challenge_service.reconcile_challenges(now)

        if ai_updated or resolved or reconciled:
            logger.info(
                f"Challenge sweep: {ai_updated} AI updated, {len(resolved)} resolved, "
                f"{reconciled} reconciled"
            )
        return {"ai_updated": ai_updated, "resolved": len(resolved), "reconciled": reconciled}
