"""Prometheus scrape endpoint"""
import logging
from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from habitquest.db.store import Filter
from habitquest.exceptions import HabitQuestError
from habitquest.models.challenge import ChallengeStatus
from habitquest.observability.metrics import open_challenges
from habitquest.services import get_container

logger = logging.getLogger(__name__)

router = APIRouter()

OPEN_STATUSES = (ChallengeStatus.PENDING, ChallengeStatus.ACTIVE)


async def refresh_challenge_gauges() -> None:
    """Count pending and active challenges in the store"""
    store = get_container().store
    for status in OPEN_STATUSES:
        docs = await store.query("challenges", filters=[Filter("status", "==", status.value)])
        open_challenges.labels(status=status.value).set(len(docs))


@router.get("/metrics")
async def metrics_endpoint():
    """Expose Prometheus metrics"""
    try:
        await refresh_challenge_gauges()
    except HabitQuestError as e:
        logger.warning(f"Could not refresh challenge gauges: {e}")

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
