"""
Operator endpoints (X-Admin-Key).

- GET /api/admin/payments/follow-ups: payments that could not be fully
  reconciled and need a manual look
"""
import logging

from fastapi import APIRouter, Depends, Query

from curlara.api.deps import get_store, require_admin
from curlara.core.admin_auth import AdminActor
from curlara.features.entitlements.store import EntitlementStore

logger = logging.getLogger("curlara")

router = APIRouter(prefix="/api/admin/payments", tags=["admin"])


def _serialize(record: dict) -> dict:
    recorded_at = record.get("recorded_at")
    return {**record, "recorded_at": recorded_at.isoformat() if recorded_at else None}


@router.get("/follow-ups")
def list_follow_ups(
    limit: int = Query(50, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
    store: EntitlementStore = Depends(get_store),
):
    records = store.list_follow_ups(limit=limit)
    logger.info(
        "admin.follow_ups.listed",
        extra={"actor_id": actor.actor_id, "count": len(records)},
    )
    return {"items": [_serialize(r) for r in records], "count": len(records)}
