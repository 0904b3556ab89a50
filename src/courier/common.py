"""Common utility functions for the project."""

from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import Any

from courier.core.schema import Conversation


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"

    def __str__(self) -> str:
        return self.value


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def truncate_text(text: str, limit: int = 80) -> str:
    """Shorten *text* to *limit* characters, marking the cut with an ellipsis."""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def format_relative_time(value: datetime | None, now: datetime | None = None) -> str:
    """
    Render *value* relative to *now*: "Just now", "5m ago", "3h ago", "2d ago".

    Anything older than a week is shown as a date.
    """
    if value is None:
        return ""
    now = now or utcnow()
    seconds = (as_utc(now) - as_utc(value)).total_seconds()
    if seconds < 60:
        return "Just now"
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return as_utc(value).strftime("%b %d")


def conversation_title(conversation: Conversation, user_id: str) -> str:
    """Display title: the name, else the other participant, else a group label."""
    if conversation.name:
        return conversation.name
    others = [pid for pid in conversation.participants if pid != user_id]
    if conversation.type == "direct" and len(others) == 1:
        return conversation.participant_names.get(others[0], "Unknown")
    return f"Group Chat ({len(conversation.participants)} people)"
