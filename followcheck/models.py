"""
Typed models used across services.
"""

import time
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_PAGE_WIDTH = 1000
DEFAULT_PAGE_HEIGHT = 2000


class BoundingBox(BaseModel):
    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def center_x(self) -> float:
        return (self.x0 + self.x1) / 2

    @property
    def center_y(self) -> float:
        return (self.y0 + self.y1) / 2


class RecognizedWord(BaseModel):
    """One OCR token with its pixel box."""
    text: str = ""
    bbox: BoundingBox


class PageDimensions(BaseModel):
    width: int = Field(DEFAULT_PAGE_WIDTH, gt=0)
    height: int = Field(DEFAULT_PAGE_HEIGHT, gt=0)

    @classmethod
    def from_size(cls, width: int | None, height: int | None) -> "PageDimensions":
        """Fall back to the defaults when the engine can't tell us the size."""
        if not width or not height or width <= 0 or height <= 0:
            return cls()
        return cls(width=int(width), height=int(height))


class FollowState(str, Enum):
    FOLLOWING = "following"
    NOT_FOLLOWING = "not_following"
    UNKNOWN = "unknown"


class Landmark(BaseModel):
    text: str
    rel_y: float
    is_strong: bool = False
    raw: str | None = None


class LandmarkSet(BaseModel):
    """
    Scratch record for a single classification pass.
    """
    display_name: Landmark | None = None
    username: Landmark | None = None
    joined_date: Landmark | None = None
    following_row: Landmark | None = None
    follow_button: Landmark | None = None

    def ordered(self) -> list[Landmark | None]:
        """The slots that must appear top to bottom on a profile page."""
        return [self.display_name, self.username, self.joined_date, self.following_row]


class LayoutVerdict(BaseModel):
    """
    The classifier's judgment about a screenshot.
    """
    is_valid: bool
    reason: str
    follow_state: FollowState = FollowState.UNKNOWN
    confidence: int = Field(0, ge=0, le=100)


class RecognitionResult(BaseModel):
    """
    What a recognition engine hands back for one image.
    """
    words: list[RecognizedWord] = Field(default_factory=list)
    text: str = ""
    confidence: float | None = None
    dimensions: PageDimensions = Field(default_factory=PageDimensions)
    engine: str = "unknown"


class Step(str, Enum):
    USERNAME = "username"
    FOLLOW_CHECK = "follow_check"
    SCREENSHOT = "screenshot"
    DONE = "done"


class VerificationSession(BaseModel):
    user_id: int
    step: Step = Step.USERNAME
    claimed_handle: str | None = None
    attempt_count: int = 0
    created_at: float = Field(default_factory=time.monotonic)


class Applicant(BaseModel):
    """The Telegram user who submitted evidence."""
    user_id: int
    full_name: str = ""
    tg_username: str | None = None


class Action(str, Enum):
    AUTO_ACCEPT = "auto_accept"
    ESCALATE = "escalate"
    ERROR_ESCALATE = "error_escalate"


class Decision(BaseModel):
    action: Action
    verdict: LayoutVerdict | None = None
    reason: str = ""
    follow_state: FollowState = FollowState.UNKNOWN
    handle_present: bool = False
    error: str | None = None
