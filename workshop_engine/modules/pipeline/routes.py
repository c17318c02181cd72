from fastapi import APIRouter, Depends
from supabase import Client
from typing import Dict
import logging

from workshop_engine.core.dependencies import get_current_user_id
from workshop_engine.database.supabase_client import get_supabase
from workshop_engine.modules.bookings.service import BookingService
from workshop_engine.modules.pipeline.schemas import SyncResult
from workshop_engine.modules.pipeline.service import PipelineSynchronizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.post("/sync", response_model=SyncResult)
def sync_pipeline(
    user_data: Dict = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase)
):
    """Promote early-funnel leads that already hold a workshop booking"""
    promoted = PipelineSynchronizer(supabase).sweep()
    return SyncResult(promoted=promoted)


@router.post("/retry-deferred", response_model=SyncResult)
def retry_deferred(
    user_data: Dict = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase)
):
    """Replay CRM sync for converted bookings the CRM never acknowledged"""
    retried, deferred = BookingService(supabase).retry_deferred_conversions()
    logger.info(f"Deferred CRM sync retry by {user_data.get('email')}: {retried} synced, {deferred} still deferred")
    return SyncResult(retried=retried, deferred=deferred)
