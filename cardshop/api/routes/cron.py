"""
Cron endpoint for reservation cleanup

For hosts that trigger jobs over HTTP instead of running the in-process
sweeper. Requires CRON_SECRET as a bearer token when it is set.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.api.deps import require_cron_secret
from cardshop.core.database import get_db
from cardshop.core.error_handler import sanitize_error_message
from cardshop.services.stock_cleanup import sweep_expired_reservations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.api_route("/cleanup-reservations", methods=["GET", "POST"])
async def cleanup_reservations(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_cron_secret),
):
    try:
        stats = await sweep_expired_reservations(db)
    except Exception as e:
        await db.rollback()
        logger.error(f"Cron cleanup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Cleanup failed: {sanitize_error_message(e)}")

    return {"success": True, **stats}
