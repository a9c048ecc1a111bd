from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict


class TimelineStepRead(BaseModel):
    id: str
    type: str
    title: str
    status: str
    description: Optional[str] = None
    # "Pending" for the finance placeholder step, otherwise a timestamp.
    date: Union[datetime, str, None] = None
    user: Optional[str] = None
    date_label: str = ""
    user_label: str = ""
    notes: Optional[str] = None
    attempt_number: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class OfferTimelineRead(BaseModel):
    offer_id: int
    lineage_id: int
    current_attempt_number: int
    description: str
    steps: List[TimelineStepRead]
    rejection_reasons: List[TimelineStepRead] = []
