from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_TTL_SECONDS = 10 * 365 * 24 * 3600  # ten years


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserRead(BaseModel):
    """Public view of an account. Never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    role: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: datetime


class ProfileUpdate(BaseModel):
    avatar_url: Optional[str] = Field(default=None, max_length=2048)
    bio: Optional[str] = Field(default=None, max_length=500)


class RoleUpdate(BaseModel):
    role: str = Field(..., pattern="^(user|moderator|admin|community_manager)$")


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

class PostCreate(BaseModel):
    content: str
    parent_id: Optional[str] = None
    image_url: Optional[str] = Field(default=None, max_length=2048)
    ttl_seconds: Optional[int] = Field(
        default=None, le=MAX_TTL_SECONDS, description="Overrides the default 30-day expiry when > 0."
    )
    replies_disabled: bool = False
    popup_reply_limit: Optional[int] = Field(default=None, ge=1)
    popup_time_limit: Optional[int] = Field(default=None, ge=1, description="Minutes.")
    reply_key: Optional[str] = Field(
        default=None,
        description="Lets the key's recipient reply to a post whose replies are disabled.",
    )


class PostRead(BaseModel):
    id: str
    user_id: str
    username: str
    role: str
    avatar_url: Optional[str] = None
    content: str
    created_at: datetime
    expires_at: datetime
    parent_id: Optional[str] = None
    repost_of: Optional[str] = None
    image_url: Optional[str] = None
    is_whisper: bool = False
    is_quarantined: bool = False
    is_popup_thread: bool = False
    popup_reply_limit: Optional[int] = None
    popup_time_limit: Optional[int] = None
    popup_closed_at: Optional[datetime] = None
    replies_disabled: bool = False
    reply_count: int = 0
    repost_count: int = 0


class FlaggedPostRead(PostRead):
    flag_count: int = 0


class RepliesDisabledUpdate(BaseModel):
    replies_disabled: bool


# ---------------------------------------------------------------------------
# Whispers
# ---------------------------------------------------------------------------

class WhisperCreate(BaseModel):
    content: str
    parent_id: str
    image_url: Optional[str] = Field(default=None, max_length=2048)
    ttl_seconds: Optional[int] = Field(default=None, le=MAX_TTL_SECONDS)


class WhisperRead(PostRead):
    parent_content: Optional[str] = None
    parent_user_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Reply keys
# ---------------------------------------------------------------------------

class ReplyKeyCreate(BaseModel):
    post_id: str
    recipient_id: str


class ReplyKeyIssued(BaseModel):
    id: str
    reply_key: str
    expires_at: datetime
    message: str = "Reply key created. Share this key with the recipient to continue the conversation."


class ReplyKeyValidate(BaseModel):
    reply_key: str
    post_id: str


class ReplyKeyValidation(BaseModel):
    valid: bool = True
    creator_username: str
    recipient_username: str
    expires_at: datetime


class ReplyKeyRead(BaseModel):
    id: str
    post_id: str
    creator_username: str
    recipient_username: str
    expires_at: datetime
    post_content: str


# ---------------------------------------------------------------------------
# Popup threads
# ---------------------------------------------------------------------------

class PopupCreate(BaseModel):
    reply_limit: int = Field(..., ge=1)
    time_limit_minutes: int = Field(..., ge=1)


class PopupStatusRead(BaseModel):
    is_closed: bool
    reason: Optional[str] = None
    remaining_replies: Optional[int] = None
    remaining_time_ms: Optional[int] = None


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------

class InviteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    created_by: Optional[str] = None
    created_at: datetime
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None


class InviteUsage(BaseModel):
    code: str
    used_by: Optional[str] = None
    used_by_username: Optional[str] = None


class InviterRead(BaseModel):
    inviter_id: str
    inviter_username: str


# ---------------------------------------------------------------------------
# Flags & moderation
# ---------------------------------------------------------------------------

class FlagCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class FlagRead(BaseModel):
    id: str
    post_id: str
    user_id: str
    username: str
    reason: str
    created_at: datetime


class FlagResult(BaseModel):
    flag_count: int
    quarantined: bool


class FlagReasonCount(BaseModel):
    reason: str
    count: int


class FlagSummary(BaseModel):
    total: int
    reasons: List[FlagReasonCount]


class BanCreate(BaseModel):
    user_id: str
    reason: str = Field(..., min_length=1, max_length=500)


class BanRead(BaseModel):
    id: str
    username: str
    reason: str
    banned_at: datetime
    banned_by: Optional[str] = None


class BanStatus(BaseModel):
    banned: bool
    reason: Optional[str] = None
    banned_at: Optional[datetime] = None
    banned_by: Optional[str] = None


class MuteCreate(BaseModel):
    user_id: str
    reason: str = Field(..., min_length=1, max_length=500)
    duration_hours: int = Field(default=24, ge=1, le=8760)


class MuteRead(BaseModel):
    id: str
    username: str
    reason: str
    muted_at: datetime
    expires_at: datetime
    muted_by: Optional[str] = None


class MuteStatus(BaseModel):
    muted: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    muted_by: Optional[str] = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: str
    post_id: Optional[str] = None
    from_user_id: Optional[str] = None
    from_username: str
    created_at: datetime
    read: bool


class DeviceRegister(BaseModel):
    token: str = Field(..., min_length=8, max_length=512)
    platform: str = Field(default="android", pattern="^(android|ios|web)$")


class BroadcastRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    body: str = Field(..., min_length=1, max_length=500)
    data: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

class TicketCreate(BaseModel):
    type: str = Field(..., pattern="^(feedback|bug_report|support|feature_request)$")
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    priority: str = Field(..., pattern="^(low|medium|high|urgent)$")


class TicketStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(open|in_progress|resolved|closed)$")


class TicketRead(BaseModel):
    id: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    type: str
    title: str
    description: str
    status: str
    priority: str
    created_at: datetime
    updated_at: datetime
    assigned_to: Optional[str] = None
    assigned_username: Optional[str] = None


# ---------------------------------------------------------------------------
# News
# ---------------------------------------------------------------------------

class NewsCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    content: str = Field(..., min_length=1)
    is_published: bool = False


class NewsUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=256)
    content: Optional[str] = Field(default=None, min_length=1)
    is_published: Optional[bool] = None


class NewsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    author_id: Optional[str] = None
    title: str
    content: str
    is_published: bool
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class StatsRead(BaseModel):
    total_users: int
    total_posts: int
    total_invites: int


class SecurityEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details_json: Optional[str] = None
    created_at: datetime


class LoginHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    username: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    method: str
    created_at: datetime
