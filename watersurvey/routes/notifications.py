from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import Actor, get_current_actor
from ..database import get_db
from ..models_notification import Notification, RecipientKind

router = APIRouter(prefix="/notifications", tags=["Notifications"])

ROLE_RECIPIENT_KINDS = {
    "customer": RecipientKind.CUSTOMER,
    "vendor": RecipientKind.VENDOR,
    "admin": RecipientKind.ADMIN,
}


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    message: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[int] = None
    payload: Optional[dict] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


def _inbox_query(db: Session, actor: Actor):
    kind = ROLE_RECIPIENT_KINDS[actor.role]
    query = db.query(Notification).filter(Notification.recipient_kind == kind)
    if kind == RecipientKind.ADMIN:
        # admin notifications are broadcast to every operator
        return query.filter(or_(Notification.recipient_id.is_(None), Notification.recipient_id == actor.id))
    return query.filter(Notification.recipient_id == actor.id)


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Get the caller's notification inbox, newest first"""
    query = _inbox_query(db, actor)
    unread_count = query.filter(Notification.is_read.is_(False)).count()
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    rows = query.order_by(Notification.id.desc()).offset(skip).limit(limit).all()
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in rows],
        unread_count=unread_count,
    )


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    notification = _inbox_query(db, actor).filter(Notification.id == notification_id).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        db.commit()
    return {"message": "Notification marked as read"}


@router.post("/read-all")
async def mark_all_notifications_read(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    updated = (
        _inbox_query(db, actor)
        .filter(Notification.is_read.is_(False))
        .update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
    )
    db.commit()
    return {"message": "Notifications marked as read", "updated": updated}
