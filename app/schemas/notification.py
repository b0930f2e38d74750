from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..models.notification import NoticeKind


class Notification(BaseModel):
    id: int
    user_id: str
    event_id: Optional[int] = None
    kind: NoticeKind
    title: str
    message: str
    data: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
