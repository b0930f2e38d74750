from fastapi import APIRouter

from .endpoints import bookings, events, notifications, waitlist

api_router = APIRouter()
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(bookings.router, prefix="/events", tags=["bookings"])
api_router.include_router(waitlist.router, tags=["waitlist"])
api_router.include_router(
    notifications.router, prefix="/notifications", tags=["notifications"]
)
