"""
Chat system models.

This module defines the data models for the chat system supporting:
- Direct (1:1) chats between exactly two users
- Group chats governed by an owner, admins and muted members
- Per-recipient delivery and read receipts

Models:
    Chat: Container for messages between participants
    DirectChatPair: Helper for enforcing uniqueness of direct chats
    Participant: User membership in a chat with role and mute state
    Message: Individual message within a chat
    MessageReceipt: Delivery/read state of one message for one user
    MessageReaction: One emoji reaction per user per message

Design Decisions:
    - Ownership is an explicit role, not a list position. The ordered admin
      list is derived: owner first, then admins by admin_position.
    - Participant rows are never deleted; leaving or removal sets left_at,
      which strips the user from members, admins and muted at once.
    - delivered_by/read_by are derived from MessageReceipt rows, which only
      ever gain timestamps (sets grow monotonically).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from core.models import BaseModel

if TYPE_CHECKING:
    from authentication.models import User


class ChatType(models.TextChoices):
    """
    Type of chat.

    DIRECT: Exactly two participants, no roles
    GROUP: Creator plus at least two members, role-based governance
    """

    DIRECT = "direct", "Direct Message"
    GROUP = "group", "Group"


class ParticipantRole(models.TextChoices):
    """
    Role within a group chat.

    Hierarchy: OWNER > ADMIN > MEMBER

    OWNER: Transfer ownership, delete group, remove admins
    ADMIN: Add/remove members, mute, promote, edit group info, pin
    MEMBER: Send messages (unless muted), leave

    Note: Direct chats do not use roles (role is NULL for direct participants)
    """

    OWNER = "owner", "Owner"
    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


ADMIN_ROLES = (ParticipantRole.OWNER, ParticipantRole.ADMIN)


def order_admins(participants) -> list:
    """
    Build the ordered admin list from active participants.

    The owner always leads; the remaining admins follow by admin_position.
    Members are skipped.
    """
    owner = [p for p in participants if p.role == ParticipantRole.OWNER]
    admins = sorted(
        (p for p in participants if p.role == ParticipantRole.ADMIN),
        key=lambda p: (p.admin_position is None, p.admin_position or 0, p.id),
    )
    return owner + admins


class MessageContentType(models.TextChoices):
    """Kind of message body. Stickers and GIFs carry a URL in content."""

    TEXT = "text", "Text"
    STICKER = "sticker", "Sticker"
    GIF = "gif", "GIF"


class Chat(BaseModel):
    """
    A chat between two or more users.

    Chat Types:
        DIRECT: Exactly 2 participants, no name, no roles.
                Unique per user pair (enforced via DirectChatPair).

        GROUP: Creator plus 2+ members. Creator becomes owner.

    Fields:
        chat_type: Type of chat (direct or group)
        name: Group name (empty string for direct chats)
        icon_url: Group icon URL in object storage
        description: Free text group description
        created_by: User who created the chat
        latest_message: Most recent message (weak reference, listing order only)
        pinned_messages: Messages of this chat pinned by an admin

    Relationships:
        participants: All Participant records (active and historical)
        messages: All Message records
        direct_pair: DirectChatPair if type is DIRECT
    """

    chat_type = models.CharField(
        max_length=10,
        choices=ChatType.choices,
        default=ChatType.GROUP,
        db_index=True,
        help_text="Type of chat (direct or group)",
    )

    name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name for group chats (empty for direct)",
    )

    icon_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Group icon URL",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Group description",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_chats",
        help_text="User who created this chat",
    )

    latest_message = models.ForeignKey(
        "chat.Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Most recent message (for sorting chat lists)",
    )

    pinned_messages = models.ManyToManyField(
        "chat.Message",
        blank=True,
        related_name="pinned_in",
        help_text="Messages pinned in this chat",
    )

    class Meta:
        db_table = "chat_chat"
        ordering = ["-updated_at"]
        indexes = [
            models.Index(fields=["-updated_at"], name="chat_chat_updated_idx"),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        if self.chat_type == ChatType.DIRECT:
            return f"Direct({self.pk})"
        if self.name:
            return f"Group: {self.name}"
        return f"Group({self.pk})"

    @property
    def is_direct(self) -> bool:
        """Check if this is a direct (1:1) chat."""
        return self.chat_type == ChatType.DIRECT

    @property
    def is_group(self) -> bool:
        """Check if this is a group chat."""
        return self.chat_type == ChatType.GROUP

    def get_active_participants(self):
        """
        Get queryset of active participants in join order.

        Returns:
            QuerySet of Participant objects where left_at is NULL
        """
        return self.participants.filter(left_at__isnull=True).order_by("joined_at", "id")

    def get_active_participant_for_user(self, user: User | int) -> Participant | None:
        """
        Get active participant record for a specific user.

        Args:
            user: User (or user id) to find participant for

        Returns:
            Participant if user is active in chat, None otherwise
        """
        user_id = getattr(user, "pk", user)
        return self.participants.filter(user_id=user_id, left_at__isnull=True).first()

    # Derived ordered sets. Each call hits the database.

    def user_ids(self) -> list[int]:
        """Active member ids in join order."""
        return list(self.get_active_participants().values_list("user_id", flat=True))

    def admin_ids(self) -> list[int]:
        """Owner first, then admins in list order."""
        return [p.user_id for p in order_admins(self.get_active_participants())]

    def muted_ids(self) -> list[int]:
        """Muted active member ids in join order."""
        return list(
            self.get_active_participants()
            .filter(is_muted=True)
            .values_list("user_id", flat=True)
        )

    def owner_id(self) -> int | None:
        """Id of the active owner, None for direct chats."""
        return (
            self.get_active_participants()
            .filter(role=ParticipantRole.OWNER)
            .values_list("user_id", flat=True)
            .first()
        )


class DirectChatPair(models.Model):
    """
    Enforces uniqueness of direct chats between two users.

    Stores user pairs in canonical order (lower user_id first) so that
    {A, B} and {B, A} resolve to the same row.

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One chat per pair
        - CheckConstraint(user_lower_id < user_higher_id): Canonical order
    """

    chat = models.OneToOneField(
        Chat,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The direct chat this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this pair",
    )

    class Meta:
        db_table = "chat_direct_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_chat_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="direct_pair_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical(user_a_id: int, user_b_id: int) -> tuple[int, int]:
        """Order two user ids as (lower, higher)."""
        return (user_a_id, user_b_id) if user_a_id < user_b_id else (user_b_id, user_a_id)


class Participant(BaseModel):
    """
    Tracks user membership in chats.

    Each join creates a NEW Participant record; leaving sets left_at and
    keeps the row as history.

    Governance:
        - Direct chats: role is NULL, is_muted is always False
        - Group chats: exactly one active OWNER, any number of ADMINs
        - admin_position orders admins behind the owner
        - An owner or admin can never be muted (database check)

    Fields:
        chat: Chat this membership belongs to
        user: Member user
        role: Role in group chat (NULL for direct)
        is_muted: Whether the member may not send messages
        admin_position: Rank in the admin list (NULL for members)
        joined_at: When the user joined
        left_at: When the user left (NULL if still active)
        left_voluntarily: True if user left, False if removed
        removed_by: User who removed this participant (if applicable)
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Chat this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_participations",
        help_text="Member user",
    )

    role = models.CharField(
        max_length=10,
        choices=ParticipantRole.choices,
        null=True,
        blank=True,
        db_index=True,
        help_text="Role in group chat (null for direct chats)",
    )

    is_muted = models.BooleanField(
        default=False,
        help_text="Muted members cannot send messages to the group",
    )

    admin_position = models.IntegerField(
        null=True,
        blank=True,
        help_text="Position in the admin list, lower first (owner always leads)",
    )

    joined_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user joined this chat",
    )

    left_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the user left (null if still active)",
    )

    left_voluntarily = models.BooleanField(
        null=True,
        blank=True,
        help_text="True if user left voluntarily, False if removed by someone",
    )

    removed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="removed_chat_participants",
        help_text="User who removed this participant",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["joined_at", "id"]
        indexes = [
            models.Index(
                fields=["chat", "left_at"],
                name="chat_part_chat_active_idx",
            ),
            models.Index(
                fields=["user", "left_at"],
                name="chat_part_user_active_idx",
            ),
        ]
        constraints = [
            # Only one active membership per user per chat
            models.UniqueConstraint(
                fields=["chat", "user"],
                condition=Q(left_at__isnull=True),
                name="unique_active_chat_participation",
            ),
            # At most one active owner per chat
            models.UniqueConstraint(
                fields=["chat"],
                condition=Q(left_at__isnull=True, role=ParticipantRole.OWNER),
                name="unique_active_chat_owner",
            ),
            # Admins are never muted
            models.CheckConstraint(
                condition=~Q(is_muted=True, role__in=ADMIN_ROLES),
                name="participant_admin_not_muted",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        status = "active" if self.is_active else "left"
        role_str = f" ({self.role})" if self.role else ""
        return f"Participant: {self.user_id} in {self.chat_id}{role_str} [{status}]"

    @property
    def is_active(self) -> bool:
        """Check if this membership is currently active."""
        return self.left_at is None

    @property
    def is_owner(self) -> bool:
        """Check if participant has OWNER role."""
        return self.role == ParticipantRole.OWNER

    @property
    def is_admin_or_owner(self) -> bool:
        """Check if participant has ADMIN or OWNER role."""
        return self.role in ADMIN_ROLES


class Message(BaseModel):
    """
    A message within a chat.

    Lifecycle:
        Created on send with the sender already delivered and read. After
        that only receipts, the derived is_read flag and reactions change.
        Messages are never edited or deleted here.

    Fields:
        chat: Chat this message belongs to
        sender: User who sent the message
        content: Text, or a URL for stickers and GIFs
        content_type: text, sticker or gif
        reply_to: Message in the same chat this one answers
        mentions: Participants referenced by this message
        is_read: Derived flag (direct: other party read it, group: everyone did)

    Relationships:
        receipts: MessageReceipt rows (delivered_by/read_by)
        reactions: MessageReaction rows
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Chat this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message",
    )

    content = models.TextField(
        help_text="Message text, or media URL for stickers and GIFs",
    )

    content_type = models.CharField(
        max_length=10,
        choices=MessageContentType.choices,
        default=MessageContentType.TEXT,
        help_text="Kind of message body",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message this one replies to (same chat)",
    )

    mentions = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name="mentioned_in_messages",
        help_text="Participants mentioned in this message",
    )

    is_read = models.BooleanField(
        default=False,
        help_text="Derived read flag, recomputed from receipts",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["chat", "created_at"],
                name="chat_msg_chat_created_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"Message({self.pk}) from {self.sender_id}: {preview}"

    def delivered_by_ids(self) -> list[int]:
        """User ids that received this message, in delivery order."""
        return list(
            self.receipts.filter(delivered_at__isnull=False)
            .order_by("delivered_at", "id")
            .values_list("user_id", flat=True)
        )

    def read_by_ids(self) -> list[int]:
        """User ids that read this message, in read order."""
        return list(
            self.receipts.filter(read_at__isnull=False)
            .order_by("read_at", "id")
            .values_list("user_id", flat=True)
        )


class MessageReceipt(BaseModel):
    """
    Delivery/read state of one message for one user.

    State machine: unseen (no row) -> delivered -> read. Timestamps are
    only ever set, never cleared, and a read receipt is always delivered.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="receipts",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_receipts",
    )

    delivered_at = models.DateTimeField(null=True, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "chat_message_receipt"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_message_receipt",
            ),
            models.CheckConstraint(
                condition=Q(read_at__isnull=True) | Q(delivered_at__isnull=False),
                name="receipt_read_implies_delivered",
            ),
        ]
        indexes = [
            models.Index(
                fields=["user", "delivered_at"],
                name="chat_receipt_user_deliv_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Receipt(message={self.message_id}, user={self.user_id})"


class MessageReaction(BaseModel):
    """
    An emoji reaction on a message.

    At most one reaction per user per message; reacting again replaces
    the emoji.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="reactions",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_reactions",
    )

    emoji = models.CharField(max_length=32)

    class Meta:
        db_table = "chat_message_reaction"
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_reaction_per_user",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user_id} reacted {self.emoji} on {self.message_id}"
