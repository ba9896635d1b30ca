"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, history and search paging)
- Group governance (minimum members, field limits)
- Reaction management (emoji limits)
- Live relay deduplication (TTL window)
- Event names shared by the REST and WebSocket paths
- Error code to HTTP status mapping

Import example:
    from chat.constants import MESSAGE_CONFIG, CHAT_EVENTS, ERROR_STATUS
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters
    MIN_CONTENT_LENGTH: Final[int] = 1

    # History settings
    HISTORY_DEFAULT_PAGE_SIZE: Final[int] = 50
    HISTORY_MAX_PAGE_SIZE: Final[int] = 200

    # Search settings
    SEARCH_MIN_QUERY_LENGTH: Final[int] = 1
    SEARCH_MAX_RESULTS: Final[int] = 100


# =============================================================================
# Group Configuration
# =============================================================================


class GROUP_CONFIG:
    """Configuration for group governance."""

    # A group needs the creator plus at least this many other users
    MIN_OTHER_MEMBERS: Final[int] = 2

    MAX_NAME_LENGTH: Final[int] = 100
    MAX_DESCRIPTION_LENGTH: Final[int] = 500


# =============================================================================
# Reaction Configuration
# =============================================================================


class REACTION_CONFIG:
    """Configuration for message reactions."""

    # Max characters for a single emoji (handles compound emojis)
    MAX_EMOJI_LENGTH: Final[int] = 8

    # Common quick reactions for UI hints (suggestions only, not restrictions)
    QUICK_REACTIONS: Final[tuple] = ("👍", "❤️", "😂", "😮", "😢", "🎉")


# =============================================================================
# Dedup Configuration
# =============================================================================


class DEDUP_CONFIG:
    """
    Configuration for the live "new message" relay filter.

    The TTL can be overridden with the CHAT_DEDUP_TTL_SECONDS setting.
    """

    DEFAULT_TTL_SECONDS: Final[int] = 600  # 10 minutes
    SETTING_NAME: Final[str] = "CHAT_DEDUP_TTL_SECONDS"


# =============================================================================
# Channel Groups & Events
# =============================================================================


class CHANNEL_GROUPS:
    """Channel layer group names."""

    PRESENCE: Final[str] = "presence"
    CHAT_PREFIX: Final[str] = "chat_"
    USER_PREFIX: Final[str] = "user_"


class CHAT_EVENTS:
    """
    Event names on the wire.

    Inbound names are sent by clients; everything else is outbound only.
    """

    # Inbound
    SETUP: Final[str] = "setup"
    JOIN_CHAT: Final[str] = "join chat"
    NEW_MESSAGE: Final[str] = "new message"
    TYPING: Final[str] = "typing"
    STOP_TYPING: Final[str] = "stop typing"
    MARK_DELIVERED: Final[str] = "mark message delivered"
    MARK_READ: Final[str] = "mark message read"

    # Outbound
    CONNECTED: Final[str] = "connected"
    ERROR: Final[str] = "error"
    USER_ONLINE: Final[str] = "user online"
    USER_OFFLINE: Final[str] = "user offline"
    MESSAGE_DELIVERED: Final[str] = "message delivered"
    MESSAGE_STATUS_UPDATE: Final[str] = "message status update"
    GROUP_INFO_UPDATED: Final[str] = "group info updated"
    GROUP_MEMBERS_UPDATED: Final[str] = "group members updated"
    GROUP_ADMINS_UPDATED: Final[str] = "group admins updated"
    GROUP_MUTED_UPDATED: Final[str] = "group muted users updated"
    GROUP_OWNERSHIP_TRANSFERRED: Final[str] = "group ownership transferred"
    GROUP_DELETED: Final[str] = "group deleted"
    MESSAGE_PINNED: Final[str] = "message pinned"
    MESSAGE_UNPINNED: Final[str] = "message unpinned"
    MESSAGE_REACTION_UPDATED: Final[str] = "message reaction updated"
    MENTIONED_IN_MESSAGE: Final[str] = "mentioned in message"
    ADDED_TO_GROUP: Final[str] = "added to group"
    REMOVED_FROM_GROUP: Final[str] = "removed from group"
    LEFT_GROUP: Final[str] = "left group"
    USER_TYPING: Final[str] = "user typing"
    USER_STOPPED_TYPING: Final[str] = "user stopped typing"


# =============================================================================
# WebSocket Close Codes
# =============================================================================


class CLOSE_CODES:
    """Application close codes (4000-4999 range)."""

    UNAUTHENTICATED: Final[int] = 4001


# =============================================================================
# Error Codes
# =============================================================================

# Maps ServiceResult.error_code to the HTTP status the REST layer returns.
# Codes missing here fall back to 400.
ERROR_STATUS: Final[dict[str, int]] = {
    # Validation
    "VALIDATION_ERROR": 400,
    "TOO_FEW_MEMBERS": 400,
    "NAME_REQUIRED": 400,
    "EMPTY_CONTENT": 400,
    "CONTENT_TOO_LONG": 400,
    "INVALID_CONTENT_TYPE": 400,
    "INVALID_REPLY": 400,
    "INVALID_EMOJI": 400,
    "INVALID_USERS": 400,
    "SAME_USER": 400,
    "NOT_GROUP": 400,
    "QUERY_TOO_SHORT": 400,
    # Authorization
    "NOT_PARTICIPANT": 403,
    "NOT_ADMIN": 403,
    "NOT_OWNER": 403,
    "MUTED": 403,
    "NOT_SENDER": 403,
    # Not found
    "CHAT_NOT_FOUND": 404,
    "MESSAGE_NOT_FOUND": 404,
    "USER_NOT_FOUND": 404,
    "REACTION_NOT_FOUND": 404,
    # Invariant
    "LAST_ADMIN": 409,
    "CANNOT_MUTE_ADMIN": 409,
    "CANNOT_REMOVE_ADMIN": 409,
    "CANNOT_REMOVE_OWNER": 409,
    "TARGET_NOT_MEMBER": 409,
}
