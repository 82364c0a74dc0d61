"""Data shapes shared by the conversation, driver and coordinator."""

import asyncio
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from auction_bot.core.errors import FailureKind

# Sort key for listings whose price text has no digits; always sorts last.
PRICE_SENTINEL = sys.maxsize

class SessionState(str, Enum):
    COLLECTING = "collecting"
    DISPATCHING = "dispatching"
    IDLE = "idle"

class ConversationSession(BaseModel):
    user_id: str
    step_index: int = 0
    collected: Dict[str, str] = Field(default_factory=dict)
    state: SessionState = SessionState.COLLECTING
    created_at: float = Field(default_factory=time.time)

class SearchCriteria(BaseModel):
    """Normalized, immutable search input. Skipped slots stay None."""

    model_config = ConfigDict(frozen=True)

    maker: Optional[str] = None
    model: Optional[str] = None
    grade: Optional[str] = None
    type: Optional[str] = None
    budget_yen: Optional[int] = None
    mileage_km: Optional[int] = None
    keyword: Optional[str] = None

    def freeword(self) -> str:
        """Text typed into the site's freeword box."""
        parts = [self.maker, self.model, self.grade, self.type, self.keyword]
        return " ".join(p.strip() for p in parts if p and p.strip())

class ListingRecord(BaseModel):
    title: str
    grade: Optional[str] = None
    district: Optional[str] = None
    year: Optional[str] = None
    mileage_text: str = ""
    price_text: str = ""
    price_sort_key: int = PRICE_SENTINEL
    image_url: Optional[str] = None
    detail_url: Optional[str] = None

class ConversationReply(BaseModel):
    reply: str
    dispatch: Optional[SearchCriteria] = None

class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

class JobOutcome(BaseModel):
    user_id: str
    records: List[ListingRecord] = Field(default_factory=list)
    failure: Optional[FailureKind] = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.failure is None

@dataclass
class AutomationJob:
    user_id: str
    criteria: SearchCriteria
    status: JobStatus = JobStatus.RUNNING
    failure_kind: Optional[FailureKind] = None
    started_at: float = field(default_factory=time.time)
    task: Optional[asyncio.Task] = None
