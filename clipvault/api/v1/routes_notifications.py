from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException, Response, status

from clipvault.api import deps

from . import schemas


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[schemas.NotificationResponse])
async def list_notifications(
    notifier: deps.NotifierDependency,
    context: deps.AuthDependency,
) -> List[schemas.NotificationResponse]:
    items = await notifier.list_for(context.user_id)
    return [schemas.NotificationResponse.from_model(item) for item in items]


@router.post("/read-all", response_model=schemas.ReadAllResponse)
async def mark_all_read(notifier: deps.NotifierDependency, context: deps.AuthDependency) -> schemas.ReadAllResponse:
    return schemas.ReadAllResponse(updated=await notifier.mark_all_read(context.user_id))


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(notification_id: int, notifier: deps.NotifierDependency, context: deps.AuthDependency) -> Response:
    if not await notifier.mark_read(context.user_id, notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="notification_not_found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
