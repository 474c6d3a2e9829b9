"""Notification recipient management, test send and delivery audit log."""

from fastapi import APIRouter, Depends, HTTPException

from tracker.api.deps import get_store, require_tracker
from tracker.engine.poll_cycle import PositionTracker
from tracker.errors import DuplicateError
from tracker.schemas.notification_email import (
    NotificationEmailBulk,
    NotificationEmailCreate,
    NotificationEmailRead,
    NotificationLogRead,
    normalize_email,
)
from tracker.services.store import TrackedPositionStore

router = APIRouter(prefix="/api/emails", tags=["emails"])


@router.get("", response_model=list[NotificationEmailRead])
def list_emails(store: TrackedPositionStore = Depends(get_store)):
    return store.list_emails(active_only=True)


@router.post("", response_model=NotificationEmailRead, status_code=201)
def add_email(data: NotificationEmailCreate, store: TrackedPositionStore = Depends(get_store)):
    try:
        return store.add_email(data.email)
    except DuplicateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/bulk", status_code=201)
def add_emails_bulk(data: NotificationEmailBulk, store: TrackedPositionStore = Depends(get_store)):
    added, skipped = store.add_emails(data.emails)
    return {
        "added": [NotificationEmailRead.model_validate(row) for row in added],
        "skipped": skipped,
    }


@router.post("/test")
async def send_test(tracker: PositionTracker = Depends(require_tracker)):
    if not tracker.store.list_emails(active_only=True):
        raise HTTPException(status_code=400, detail="No notification emails configured")
    sent = await tracker.dispatcher.send_test_notification()
    if not sent:
        raise HTTPException(status_code=502, detail="Test notification was not sent")
    return {"status": "ok", "message": "Test notification sent"}


@router.get("/logs", response_model=list[NotificationLogRead])
def notification_logs(
    limit: int = 100,
    offset: int = 0,
    store: TrackedPositionStore = Depends(get_store),
):
    return store.list_notification_logs(limit=limit, offset=offset)


@router.delete("/{email}", status_code=204)
def remove_email(email: str, store: TrackedPositionStore = Depends(get_store)):
    try:
        email = normalize_email(email)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not store.remove_email(email):
        raise HTTPException(status_code=404, detail="Email not found")
