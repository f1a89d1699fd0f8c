"""
security/validation.py — Input rules and sanitisation
======================================================
Field rules for usernames, passwords, post content and invite codes, plus
the HTML escaper and link blocker applied to user-supplied text.

Each ``check_*`` function returns a list of human-readable errors; an
empty list means the value passed. Routes turn a non-empty list into a
400 with the errors under ``detail``.
"""
from __future__ import annotations

import re
from typing import List, Optional

from markupsafe import escape

from ..config import settings

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
INVITE_CODE_RE = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")
RESERVED_USERNAME_WORDS = ("admin", "moderator")

_DISALLOWED_CONTENT = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
]

_LINK_RE = re.compile(
    r"(https?://[\w\-._~:/?#\[\]@!$&'()*+,;=%]+)"
    r"|\bwww\.[\w\-]+\.[a-z]{2,}\b"
    r"|\b[\w\-]+\.(?:com|net|org|io|app|dev|gg|xyz|ai|co|me|site|to|info|biz|edu|gov|uk|de|fr|ru|in)\b",
    re.IGNORECASE,
)

MENTION_RE = re.compile(r"(?<![\w@])@([a-zA-Z0-9_-]{3,20})")

LINK_PLACEHOLDER = "[link blocked]"


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------

def check_username(value: Optional[str]) -> List[str]:
    if not value or not value.strip():
        return ["username is required"]
    errors: List[str] = []
    if len(value) < 3:
        errors.append("username must be at least 3 characters")
    if len(value) > 20:
        errors.append("username must be at most 20 characters")
    if not USERNAME_RE.match(value):
        errors.append("username format is invalid")
    lowered = value.lower()
    if any(word in lowered for word in RESERVED_USERNAME_WORDS):
        errors.append("Username cannot contain reserved words")
    return errors


def check_password(value: Optional[str]) -> List[str]:
    if not value:
        return ["password is required"]
    errors: List[str] = []
    if len(value) < 8:
        errors.append("Password must be at least 8 characters")
    if len(value) > 128:
        errors.append("Password must be at most 128 characters")
    if not re.search(r"[A-Z]", value):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", value):
        errors.append("Password must contain at least one number")
    return errors


def check_content(value: Optional[str], max_length: Optional[int] = None) -> List[str]:
    limit = max_length or settings.post_max_length
    if not value or not value.strip():
        return ["content is required"]
    errors: List[str] = []
    if len(value) > limit:
        errors.append(f"content must be at most {limit} characters")
    if any(p.search(value) for p in _DISALLOWED_CONTENT):
        errors.append("Content contains disallowed patterns")
    return errors


def check_invite_code(value: Optional[str]) -> List[str]:
    if not value or not value.strip():
        return ["invite is required"]
    if not INVITE_CODE_RE.match(value):
        return ["Invalid invite code format"]
    return []


# ---------------------------------------------------------------------------
# Sanitisers
# ---------------------------------------------------------------------------

def sanitize_html(value: str) -> str:
    """Escape ``& < > " '`` (via markupsafe) and ``/``."""
    return str(escape(value)).replace("/", "&#x2F;")


def contains_link(text: str) -> bool:
    return _LINK_RE.search(text) is not None


def block_links(text: str) -> str:
    return _LINK_RE.sub(LINK_PLACEHOLDER, text)


def clean_post_content(text: str) -> str:
    text = text.strip()
    if settings.block_links:
        text = block_links(text)
    return text


def extract_mentions(text: str) -> List[str]:
    """Unique ``@username`` mentions in order of appearance."""
    seen: List[str] = []
    for name in MENTION_RE.findall(text):
        if name not in seen:
            seen.append(name)
    return seen
