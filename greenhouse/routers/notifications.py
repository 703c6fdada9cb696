"""
Notifications Router - send schedule and threshold emails on demand
"""
from fastapi import APIRouter, Depends

from ..dependencies import get_notifier
from ..models import NotificationRequest, NotificationResponse
from ..notifications import Notifier

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


@router.post("/notifications", response_model=NotificationResponse)
async def send_notification(
    notification: NotificationRequest,
    notifier: Notifier = Depends(get_notifier)
):
    """
    Send one notification email synchronously

    Returns 500 with the delivery error if the email API rejects the message
    or is not configured.
    """
    email_response = await notifier.send(notification)
    return NotificationResponse(success=True, email_response=email_response)
