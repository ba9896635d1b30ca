"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on chats, group governance, messages, receipts and reactions.

Services:
    ChatService: Direct chat access and chat lookup
    GroupService: Group governance (create, members, admins, mute, ownership)
    MessageService: Message operations (send, history, search, pin)
    ReceiptService: Delivery/read tracking and the derived is_read flag
    ReactionService: One emoji reaction per user per message

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Unexpected failures raise exceptions
    - Governance reads the chat fresh and locks its row for the whole mutation
    - Broadcasting is the caller's job, after the service has committed

Usage:
    from chat.services import GroupService, MessageService, ReceiptService

    result = GroupService.create_group(creator=user, member_ids=[2, 3], name="Team")
    if result.success:
        chat = result.data

    result = MessageService.send_message(sender=user, chat_id=chat.id, content="Hi")

    result = ReceiptService.mark_read(message_id=message.id, user_id=other.id)
    snapshot = result.data  # delivered_by, read_by, is_read
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Max, Min
from django.utils import timezone

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult

from chat import selectors
from chat.constants import GROUP_CONFIG, MESSAGE_CONFIG, REACTION_CONFIG
from chat.models import (
    ADMIN_ROLES,
    Chat,
    ChatType,
    DirectChatPair,
    Message,
    MessageContentType,
    MessageReaction,
    MessageReceipt,
    Participant,
    ParticipantRole,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from authentication.models import User

logger = logging.getLogger(__name__)


class GovernanceInvariantError(ConflictError):
    """
    A group ended up in a state the governance rules forbid.

    Raised inside the mutation's transaction so the write is rolled back.
    """

    default_error_code: str = "GOVERNANCE_INVARIANT"


# =============================================================================
# Result types
# =============================================================================


@dataclass(frozen=True)
class ReceiptSnapshot:
    """
    Post-mutation delivery state of one message.

    Snapshots are self-describing: applying an older one after a newer one
    is harmless because both sets only grow.
    """

    message_id: int
    chat_id: int
    user_id: int
    delivered_by: list[int]
    read_by: list[int]
    is_read: bool
    changed: bool = True

    def as_payload(self) -> dict:
        return {
            "message_id": self.message_id,
            "chat_id": self.chat_id,
            "user_id": self.user_id,
            "delivered_by": list(self.delivered_by),
            "read_by": list(self.read_by),
            "is_read": self.is_read,
        }


@dataclass
class MembershipChange:
    """Group read model plus the users a membership mutation touched."""

    chat: Chat
    user_ids: list[int] = field(default_factory=list)
    new_owner_id: int | None = None


# =============================================================================
# Chat Service
# =============================================================================


class ChatService(BaseService):
    """
    Service for chat access.

    Methods:
        access_direct: Get or create the direct chat between two users
        get_chat_for_member: Load a chat the caller actively belongs to
        list_chats / list_groups: Chats of the caller, latest activity first
        is_member: Fresh membership check
    """

    @classmethod
    def is_member(cls, user_id: int, chat_id: int) -> bool:
        return Participant.objects.filter(
            chat_id=chat_id, user_id=user_id, left_at__isnull=True
        ).exists()

    @classmethod
    def list_chats(cls, user: User) -> ServiceResult[list[Chat]]:
        return ServiceResult.success(selectors.chats_for_user(user))

    @classmethod
    def list_groups(cls, user: User) -> ServiceResult[list[Chat]]:
        return ServiceResult.success(selectors.chats_for_user(user, chat_type=ChatType.GROUP))

    @classmethod
    def access_direct(cls, user: User, other_user_id: int) -> ServiceResult[Chat]:
        """
        Create or retrieve the direct chat between two users.

        {A, B} and {B, A} resolve to the same chat through DirectChatPair.

        Error codes:
            SAME_USER: Cannot open a direct chat with yourself
            USER_NOT_FOUND: Other user does not exist or is inactive
        """
        if user.id == other_user_id:
            return ServiceResult.failure(
                "Cannot create a direct chat with yourself",
                error_code="SAME_USER",
            )

        other = get_user_model().objects.filter(pk=other_user_id, is_active=True).first()
        if other is None:
            return ServiceResult.failure("User not found", error_code="USER_NOT_FOUND")

        lower_id, higher_id = DirectChatPair.canonical(user.id, other.id)

        existing_id = selectors.direct_chat_between(lower_id, higher_id)
        if existing_id is not None:
            cls.get_logger().debug(
                f"Found existing direct chat {existing_id} between users {lower_id} and {higher_id}"
            )
            return ServiceResult.success(selectors.chat_with_members(existing_id))

        try:
            with transaction.atomic():
                chat = Chat.objects.create(chat_type=ChatType.DIRECT, created_by=user)
                DirectChatPair.objects.create(
                    chat=chat, user_lower_id=lower_id, user_higher_id=higher_id
                )
                Participant.objects.create(chat=chat, user=user, role=None)
                Participant.objects.create(chat=chat, user=other, role=None)
        except IntegrityError:
            # Lost a race with a concurrent access for the same pair
            pair = DirectChatPair.objects.get(user_lower_id=lower_id, user_higher_id=higher_id)
            return ServiceResult.success(selectors.chat_with_members(pair.chat_id))

        cls.get_logger().info(
            f"Created direct chat {chat.id} between users {lower_id} and {higher_id}"
        )
        return ServiceResult.success(selectors.chat_with_members(chat.id))

    @classmethod
    def get_chat_for_member(cls, user: User, chat_id: int) -> ServiceResult[Chat]:
        """
        Error codes:
            CHAT_NOT_FOUND: Chat does not exist
            NOT_PARTICIPANT: Caller is not an active member
        """
        chat = selectors.chat_with_members(chat_id)
        if chat is None:
            return ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")
        if not any(p.user_id == user.id for p in chat.active_members):
            return ServiceResult.failure(
                "You are not a participant in this chat",
                error_code="NOT_PARTICIPANT",
            )
        return ServiceResult.success(chat)


# =============================================================================
# Group Service
# =============================================================================


class GroupService(BaseService):
    """
    Group governance engine.

    Every mutation locks the chat row, evaluates its predicates against
    freshly loaded participants, applies the change and re-validates the
    governance invariants before committing:

        - exactly one active owner
        - owner and admins are active members (holds by construction)
        - no admin or owner is muted

    Methods:
        create_group, update_info, add_members, remove_members, leave_group,
        transfer_ownership, promote_to_admin, mute_user, unmute_user,
        delete_group
    """

    # -------------------------------------------------------------------------
    # Predicates
    # -------------------------------------------------------------------------

    @classmethod
    def is_member(cls, user_id: int, chat_id: int) -> bool:
        return ChatService.is_member(user_id, chat_id)

    @classmethod
    def is_admin(cls, user_id: int, chat_id: int) -> bool:
        return Participant.objects.filter(
            chat_id=chat_id, user_id=user_id, left_at__isnull=True, role__in=ADMIN_ROLES
        ).exists()

    @classmethod
    def is_owner(cls, user_id: int, chat_id: int) -> bool:
        return Participant.objects.filter(
            chat_id=chat_id,
            user_id=user_id,
            left_at__isnull=True,
            role=ParticipantRole.OWNER,
        ).exists()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    @classmethod
    def _lock_group(cls, chat_id: int, actor: User) -> ServiceResult | tuple[Chat, Participant]:
        """
        Lock the group row and resolve the actor's membership.

        Must be called inside a transaction.
        """
        chat = Chat.objects.select_for_update().filter(pk=chat_id).first()
        if chat is None:
            return ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")
        if not chat.is_group:
            return ServiceResult.failure(
                "This operation is only available for group chats",
                error_code="NOT_GROUP",
            )
        actor_participant = chat.get_active_participant_for_user(actor)
        if actor_participant is None:
            return ServiceResult.failure(
                "You are not a participant in this group",
                error_code="NOT_PARTICIPANT",
            )
        return chat, actor_participant

    @staticmethod
    def _not_admin() -> ServiceResult:
        return ServiceResult.failure(
            "Only group admins can perform this action",
            error_code="NOT_ADMIN",
        )

    @staticmethod
    def _not_owner() -> ServiceResult:
        return ServiceResult.failure(
            "Only the group owner can perform this action",
            error_code="NOT_OWNER",
        )

    @staticmethod
    def _target_not_member() -> ServiceResult:
        return ServiceResult.failure(
            "User is not a member of this group",
            error_code="TARGET_NOT_MEMBER",
        )

    @classmethod
    def _next_admin_position(cls, chat: Chat) -> int:
        current = chat.get_active_participants().filter(role__in=ADMIN_ROLES).aggregate(
            top=Max("admin_position")
        )["top"]
        return 0 if current is None else current + 1

    @classmethod
    def _resolve_users(cls, user_ids: Iterable[int]) -> ServiceResult | list[User]:
        ids = list(dict.fromkeys(user_ids))
        users = {u.id: u for u in get_user_model().objects.filter(pk__in=ids, is_active=True)}
        missing = [uid for uid in ids if uid not in users]
        if missing:
            return ServiceResult.failure(
                f"Unknown users: {missing}",
                error_code="INVALID_USERS",
            )
        return [users[uid] for uid in ids]

    @classmethod
    def validate_invariants(cls, chat: Chat) -> None:
        """
        Check governance invariants for a group.

        Raises:
            GovernanceInvariantError: If any invariant is broken
        """
        active = list(chat.get_active_participants())
        if not active:
            return

        owners = [p for p in active if p.role == ParticipantRole.OWNER]
        if len(owners) != 1:
            raise GovernanceInvariantError(
                f"Group {chat.id} must have exactly one owner, found {len(owners)}",
                details={"chat_id": chat.id},
            )
        if any(p.role is None for p in active):
            raise GovernanceInvariantError(
                f"Group {chat.id} has a member without a role",
                details={"chat_id": chat.id},
            )
        muted_admins = [p.user_id for p in active if p.is_muted and p.is_admin_or_owner]
        if muted_admins:
            raise GovernanceInvariantError(
                f"Admins cannot be muted in group {chat.id}",
                details={"chat_id": chat.id, "user_ids": muted_admins},
            )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    @classmethod
    def create_group(
        cls,
        creator: User,
        member_ids: list[int],
        name: str,
        icon_url: str = "",
        description: str = "",
    ) -> ServiceResult[Chat]:
        """
        Create a new group chat.

        The creator becomes the owner (first admin). The remaining users join
        as members in the order given.

        Args:
            creator: User creating the group
            member_ids: Other users to add (creator is ignored if present)
            name: Required group name

        Returns:
            ServiceResult with the chat_with_members read model

        Error codes:
            NAME_REQUIRED: Group name cannot be empty
            TOO_FEW_MEMBERS: Fewer than two other distinct users
            INVALID_USERS: Some ids do not resolve to active users
        """
        name = name.strip() if name else ""
        if not name:
            return ServiceResult.failure("Group name is required", error_code="NAME_REQUIRED")

        other_ids = [uid for uid in dict.fromkeys(member_ids) if uid != creator.id]
        if len(other_ids) < GROUP_CONFIG.MIN_OTHER_MEMBERS:
            return ServiceResult.failure(
                f"A group needs at least {GROUP_CONFIG.MIN_OTHER_MEMBERS} other members",
                error_code="TOO_FEW_MEMBERS",
            )

        resolved = cls._resolve_users(other_ids)
        if isinstance(resolved, ServiceResult):
            return resolved

        with cls.atomic():
            chat = Chat.objects.create(
                chat_type=ChatType.GROUP,
                name=name,
                icon_url=icon_url or "",
                description=description or "",
                created_by=creator,
            )
            Participant.objects.create(
                chat=chat,
                user=creator,
                role=ParticipantRole.OWNER,
                admin_position=0,
            )
            for member in resolved:
                Participant.objects.create(chat=chat, user=member, role=ParticipantRole.MEMBER)

            cls.validate_invariants(chat)

        cls.get_logger().info(
            f"Created group {chat.id} '{name}' by user {creator.id} "
            f"with {len(resolved) + 1} members"
        )
        return ServiceResult.success(selectors.chat_with_members(chat.id))

    @classmethod
    def update_info(
        cls,
        actor: User,
        chat_id: int,
        name: str | None = None,
        icon_url: str | None = None,
        description: str | None = None,
    ) -> ServiceResult[Chat]:
        """
        Update group name, icon and/or description. Admins only.

        Fields left as None are not touched.

        Error codes:
            NOT_ADMIN, NAME_REQUIRED
        """
        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_admin_or_owner:
                return cls._not_admin()

            update_fields = ["updated_at"]
            if name is not None:
                name = name.strip()
                if not name:
                    return ServiceResult.failure(
                        "Group name cannot be empty", error_code="NAME_REQUIRED"
                    )
                chat.name = name
                update_fields.append("name")
            if icon_url is not None:
                chat.icon_url = icon_url
                update_fields.append("icon_url")
            if description is not None:
                chat.description = description
                update_fields.append("description")

            chat.save(update_fields=update_fields)

        cls.get_logger().info(f"User {actor.id} updated info of group {chat_id}")
        return ServiceResult.success(selectors.chat_with_members(chat_id))

    @classmethod
    def add_members(
        cls, actor: User, chat_id: int, user_ids: list[int]
    ) -> ServiceResult[MembershipChange]:
        """
        Add users to a group. Admins only.

        Users already active in the group are skipped; the change lists only
        the users actually added.

        Error codes:
            NOT_ADMIN, INVALID_USERS, VALIDATION_ERROR (empty list)
        """
        if not user_ids:
            return ServiceResult.failure("No users given", error_code="VALIDATION_ERROR")

        resolved = cls._resolve_users(user_ids)
        if isinstance(resolved, ServiceResult):
            return resolved

        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_admin_or_owner:
                return cls._not_admin()

            current = set(chat.user_ids())
            added = []
            for user in resolved:
                if user.id in current:
                    continue
                Participant.objects.create(chat=chat, user=user, role=ParticipantRole.MEMBER)
                added.append(user.id)

            chat.save(update_fields=["updated_at"])
            cls.validate_invariants(chat)
            ReceiptService.refresh_group_read_flags(chat)

        cls.get_logger().info(f"User {actor.id} added {added} to group {chat_id}")
        return ServiceResult.success(
            MembershipChange(chat=selectors.chat_with_members(chat_id), user_ids=added)
        )

    @classmethod
    def remove_members(
        cls, actor: User, chat_id: int, user_ids: list[int]
    ) -> ServiceResult[MembershipChange]:
        """
        Remove users from a group. Admins only.

        Removal strips the user from members, admins and muted in one write.
        Validation is all-or-nothing: one illegal target rejects the batch.

        Error codes:
            NOT_ADMIN: Actor is not an admin
            TARGET_NOT_MEMBER: A target is not an active member
            CANNOT_REMOVE_OWNER: The owner can never be removed
            CANNOT_REMOVE_ADMIN: Only the owner may remove admins
        """
        if not user_ids:
            return ServiceResult.failure("No users given", error_code="VALIDATION_ERROR")

        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_admin_or_owner:
                return cls._not_admin()

            targets = []
            for user_id in dict.fromkeys(user_ids):
                target = chat.get_active_participant_for_user(user_id)
                if target is None:
                    return cls._target_not_member()
                if target.is_owner:
                    return ServiceResult.failure(
                        "The group owner cannot be removed. Transfer ownership first.",
                        error_code="CANNOT_REMOVE_OWNER",
                    )
                if target.is_admin_or_owner and not actor_participant.is_owner:
                    return ServiceResult.failure(
                        "Only the owner can remove an admin",
                        error_code="CANNOT_REMOVE_ADMIN",
                    )
                targets.append(target)

            now = timezone.now()
            for target in targets:
                target.left_at = now
                target.left_voluntarily = False
                target.removed_by = actor
                target.save(update_fields=["left_at", "left_voluntarily", "removed_by", "updated_at"])

            chat.save(update_fields=["updated_at"])
            cls.validate_invariants(chat)
            ReceiptService.refresh_group_read_flags(chat)

        removed = [t.user_id for t in targets]
        cls.get_logger().info(f"User {actor.id} removed {removed} from group {chat_id}")
        return ServiceResult.success(
            MembershipChange(chat=selectors.chat_with_members(chat_id), user_ids=removed)
        )

    @classmethod
    def leave_group(cls, actor: User, chat_id: int) -> ServiceResult[MembershipChange]:
        """
        Leave a group voluntarily.

        The only admin cannot leave; they must promote someone, transfer
        ownership or delete the group first. An owner who leaves while other
        admins remain hands ownership to the next admin in list order.

        Error codes:
            NOT_PARTICIPANT, LAST_ADMIN
        """
        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            admins = [p for p in chat.get_active_participants() if p.is_admin_or_owner]
            if actor_participant.is_admin_or_owner and len(admins) == 1:
                return ServiceResult.failure(
                    "You are the last admin. Promote someone, transfer ownership "
                    "or delete the group before leaving.",
                    error_code="LAST_ADMIN",
                )

            actor_participant.left_at = timezone.now()
            actor_participant.left_voluntarily = True
            actor_participant.save(update_fields=["left_at", "left_voluntarily", "updated_at"])

            new_owner_id = None
            if actor_participant.is_owner:
                successor = (
                    chat.get_active_participants()
                    .filter(role=ParticipantRole.ADMIN)
                    .order_by("admin_position", "id")
                    .first()
                )
                successor.role = ParticipantRole.OWNER
                successor.save(update_fields=["role", "updated_at"])
                new_owner_id = successor.user_id

            chat.save(update_fields=["updated_at"])
            cls.validate_invariants(chat)
            ReceiptService.refresh_group_read_flags(chat)

        if new_owner_id is not None:
            cls.get_logger().info(
                f"Owner {actor.id} left group {chat_id}; ownership passed to {new_owner_id}"
            )
        else:
            cls.get_logger().info(f"User {actor.id} left group {chat_id}")
        return ServiceResult.success(
            MembershipChange(
                chat=selectors.chat_with_members(chat_id),
                user_ids=[actor.id],
                new_owner_id=new_owner_id,
            )
        )

    @classmethod
    def transfer_ownership(
        cls, actor: User, chat_id: int, new_owner_id: int
    ) -> ServiceResult[Chat]:
        """
        Hand ownership to another member. Owner only.

        Afterwards the new owner leads the admin list, the previous owner
        follows directly as an admin, and everyone else keeps their order.
        The new owner is unmuted if needed.

        Error codes:
            NOT_OWNER, SAME_USER, TARGET_NOT_MEMBER
        """
        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_owner:
                return cls._not_owner()
            if new_owner_id == actor.id:
                return ServiceResult.failure(
                    "You already own this group",
                    error_code="SAME_USER",
                )

            target = chat.get_active_participant_for_user(new_owner_id)
            if target is None:
                return cls._target_not_member()

            # Previous owner goes to the front of the remaining admins
            lowest = (
                chat.get_active_participants()
                .filter(role=ParticipantRole.ADMIN)
                .exclude(pk=target.pk)
                .aggregate(low=Min("admin_position"))["low"]
            )
            front = actor_participant.admin_position or 0
            if lowest is not None and lowest <= front:
                front = lowest - 1

            actor_participant.role = ParticipantRole.ADMIN
            actor_participant.admin_position = front
            actor_participant.save(update_fields=["role", "admin_position", "updated_at"])

            target.role = ParticipantRole.OWNER
            target.is_muted = False
            target.admin_position = front - 1
            target.save(update_fields=["role", "is_muted", "admin_position", "updated_at"])

            chat.save(update_fields=["updated_at"])
            cls.validate_invariants(chat)

        cls.get_logger().info(
            f"Transferred ownership of group {chat_id} from {actor.id} to {new_owner_id}"
        )
        return ServiceResult.success(selectors.chat_with_members(chat_id))

    @classmethod
    def promote_to_admin(cls, actor: User, chat_id: int, user_id: int) -> ServiceResult[Chat]:
        """
        Make a member an admin. Admins only.

        The new admin goes to the end of the admin list and is unmuted.
        Promoting an existing admin is a no-op.

        Error codes:
            NOT_ADMIN, TARGET_NOT_MEMBER
        """
        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_admin_or_owner:
                return cls._not_admin()

            target = chat.get_active_participant_for_user(user_id)
            if target is None:
                return cls._target_not_member()

            if not target.is_admin_or_owner:
                target.role = ParticipantRole.ADMIN
                target.is_muted = False
                target.admin_position = cls._next_admin_position(chat)
                target.save(update_fields=["role", "is_muted", "admin_position", "updated_at"])
                chat.save(update_fields=["updated_at"])

            cls.validate_invariants(chat)

        cls.get_logger().info(f"User {actor.id} promoted {user_id} to admin in group {chat_id}")
        return ServiceResult.success(selectors.chat_with_members(chat_id))

    @classmethod
    def mute_user(cls, actor: User, chat_id: int, user_id: int) -> ServiceResult[Chat]:
        """
        Mute a member. Admins only; admins themselves can never be muted.

        Error codes:
            NOT_ADMIN, TARGET_NOT_MEMBER, CANNOT_MUTE_ADMIN
        """
        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_admin_or_owner:
                return cls._not_admin()

            target = chat.get_active_participant_for_user(user_id)
            if target is None:
                return cls._target_not_member()
            if target.is_admin_or_owner:
                return ServiceResult.failure(
                    "Cannot mute an admin",
                    error_code="CANNOT_MUTE_ADMIN",
                )

            if not target.is_muted:
                target.is_muted = True
                target.save(update_fields=["is_muted", "updated_at"])

            cls.validate_invariants(chat)

        cls.get_logger().info(f"User {actor.id} muted {user_id} in group {chat_id}")
        return ServiceResult.success(selectors.chat_with_members(chat_id))

    @classmethod
    def unmute_user(cls, actor: User, chat_id: int, user_id: int) -> ServiceResult[Chat]:
        """
        Unmute a member. Admins only. Unmuting a non-muted user is a no-op.

        Error codes:
            NOT_ADMIN
        """
        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_admin_or_owner:
                return cls._not_admin()

            chat.get_active_participants().filter(user_id=user_id, is_muted=True).update(
                is_muted=False, updated_at=timezone.now()
            )

        cls.get_logger().info(f"User {actor.id} unmuted {user_id} in group {chat_id}")
        return ServiceResult.success(selectors.chat_with_members(chat_id))

    @classmethod
    def delete_group(cls, actor: User, chat_id: int) -> ServiceResult[list[int]]:
        """
        Delete a group with all its messages. Owner only.

        Returns:
            ServiceResult with the ids of the members at deletion time,
            so the caller can notify them.

        Error codes:
            NOT_OWNER
        """
        with cls.atomic():
            loaded = cls._lock_group(chat_id, actor)
            if isinstance(loaded, ServiceResult):
                return loaded
            chat, actor_participant = loaded

            if not actor_participant.is_owner:
                return cls._not_owner()

            member_ids = chat.user_ids()
            # latest_message points back into the chat's own messages
            Chat.objects.filter(pk=chat.pk).update(latest_message=None)
            chat.delete()

        cls.get_logger().info(f"User {actor.id} deleted group {chat_id}")
        return ServiceResult.success(member_ids)


# =============================================================================
# Receipt Service
# =============================================================================


class ReceiptService(BaseService):
    """
    Delivery/read tracker.

    State per (message, recipient): unseen -> delivered -> read, stored as
    MessageReceipt timestamps that are only ever set. Marking read also marks
    delivered, so read_by is always a subset of delivered_by.

    is_read has exactly one derivation (derive_is_read):
        direct: the non-sender participant is in read_by
        group:  every active participant is in read_by

    Both marks require the user to be an active participant, on the REST
    path and the live path alike.
    """

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------

    @classmethod
    def derive_is_read(cls, message: Message, read_by: Iterable[int]) -> bool:
        read = set(read_by)
        participants = message.chat.user_ids()
        if message.chat.is_direct:
            others = [uid for uid in participants if uid != message.sender_id]
            return bool(others) and all(uid in read for uid in others)
        return set(participants) <= read

    @classmethod
    def _recompute_is_read(cls, message_id: int) -> bool:
        """Re-derive is_read with the message row locked. Must run in a transaction."""
        locked = Message.objects.select_for_update().select_related("chat").get(pk=message_id)
        is_read = cls.derive_is_read(locked, locked.read_by_ids())
        if locked.is_read != is_read:
            Message.objects.filter(pk=message_id).update(is_read=is_read)
        return is_read

    @classmethod
    def refresh_group_read_flags(cls, chat: Chat) -> int:
        """
        Re-derive is_read for every message of a group after a membership change.

        Must run in the transaction that changed the membership. Returns how
        many messages flipped.
        """
        members = set(chat.user_ids())
        read_by = defaultdict(set)
        receipts = MessageReceipt.objects.filter(
            message__chat=chat, read_at__isnull=False
        ).values_list("message_id", "user_id")
        for message_id, user_id in receipts:
            read_by[message_id].add(user_id)

        flipped = {True: [], False: []}
        stored = Message.objects.select_for_update().filter(chat=chat).values_list("id", "is_read")
        for message_id, is_read in stored:
            derived = members <= read_by[message_id]
            if derived != is_read:
                flipped[derived].append(message_id)

        for is_read, message_ids in flipped.items():
            if message_ids:
                Message.objects.filter(pk__in=message_ids).update(is_read=is_read)
        return len(flipped[True]) + len(flipped[False])

    # -------------------------------------------------------------------------
    # Receipt writes (idempotent)
    # -------------------------------------------------------------------------

    @staticmethod
    def _set_delivered(message_id: int, user_id: int, now) -> bool:
        receipt, created = MessageReceipt.objects.get_or_create(
            message_id=message_id, user_id=user_id, defaults={"delivered_at": now}
        )
        if created:
            return True
        return (
            MessageReceipt.objects.filter(pk=receipt.pk, delivered_at__isnull=True).update(
                delivered_at=now, updated_at=now
            )
            > 0
        )

    @staticmethod
    def _set_read(message_id: int, user_id: int, now) -> bool:
        receipt, created = MessageReceipt.objects.get_or_create(
            message_id=message_id,
            user_id=user_id,
            defaults={"delivered_at": now, "read_at": now},
        )
        if created:
            return True
        MessageReceipt.objects.filter(pk=receipt.pk, delivered_at__isnull=True).update(
            delivered_at=now, updated_at=now
        )
        return (
            MessageReceipt.objects.filter(pk=receipt.pk, read_at__isnull=True).update(
                read_at=now, updated_at=now
            )
            > 0
        )

    @classmethod
    def _snapshot(cls, message: Message, user_id: int, changed: bool) -> ReceiptSnapshot:
        message.refresh_from_db(fields=["is_read"])
        return ReceiptSnapshot(
            message_id=message.id,
            chat_id=message.chat_id,
            user_id=user_id,
            delivered_by=message.delivered_by_ids(),
            read_by=message.read_by_ids(),
            is_read=message.is_read,
            changed=changed,
        )

    @classmethod
    def _deliver(cls, message: Message, user_id: int) -> ReceiptSnapshot:
        with cls.atomic():
            changed = cls._set_delivered(message.id, user_id, timezone.now())
            if message.chat.is_direct:
                others = [uid for uid in message.chat.user_ids() if uid != message.sender_id]
                if others and set(others) <= set(message.delivered_by_ids()):
                    cls._recompute_is_read(message.id)
        return cls._snapshot(message, user_id, changed)

    @classmethod
    def _read(cls, message: Message, user_id: int) -> ReceiptSnapshot:
        with cls.atomic():
            changed = cls._set_read(message.id, user_id, timezone.now())
            cls._recompute_is_read(message.id)
        return cls._snapshot(message, user_id, changed)

    @classmethod
    def _load_for_member(cls, message_id: int, user_id: int) -> ServiceResult | Message:
        message = Message.objects.select_related("chat").filter(pk=message_id).first()
        if message is None:
            return ServiceResult.failure("Message not found", error_code="MESSAGE_NOT_FOUND")
        if not ChatService.is_member(user_id, message.chat_id):
            return ServiceResult.failure(
                "You are not a participant in this chat",
                error_code="NOT_PARTICIPANT",
            )
        return message

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    @classmethod
    def mark_delivered(cls, message_id: int, user_id: int) -> ServiceResult[ReceiptSnapshot]:
        """
        Add user_id to delivered_by. No-op if already present.

        Error codes:
            MESSAGE_NOT_FOUND, NOT_PARTICIPANT
        """
        loaded = cls._load_for_member(message_id, user_id)
        if isinstance(loaded, ServiceResult):
            return loaded
        snapshot = cls._deliver(loaded, user_id)
        if snapshot.changed:
            cls.get_logger().debug(f"Message {message_id} delivered to {user_id}")
        return ServiceResult.success(snapshot)

    @classmethod
    def mark_read(cls, message_id: int, user_id: int) -> ServiceResult[ReceiptSnapshot]:
        """
        Add user_id to read_by (and delivered_by), then re-derive is_read.

        Error codes:
            MESSAGE_NOT_FOUND, NOT_PARTICIPANT
        """
        loaded = cls._load_for_member(message_id, user_id)
        if isinstance(loaded, ServiceResult):
            return loaded
        snapshot = cls._read(loaded, user_id)
        if snapshot.changed:
            cls.get_logger().debug(f"Message {message_id} read by {user_id}")
        return ServiceResult.success(snapshot)

    @classmethod
    def deliver_to_online(cls, message_id: int, online_user_ids: Iterable[int]) -> list[ReceiptSnapshot]:
        """
        Mark a fresh message delivered for every online recipient.

        Offline users and non-members are skipped. Returns only the
        snapshots whose state actually changed.
        """
        message = Message.objects.select_related("chat").filter(pk=message_id).first()
        if message is None:
            return []
        online = set(online_user_ids)
        recipients = [
            uid for uid in message.chat.user_ids() if uid in online and uid != message.sender_id
        ]
        snapshots = []
        for user_id in recipients:
            snapshot = cls._deliver(message, user_id)
            if snapshot.changed:
                snapshots.append(snapshot)
        return snapshots

    @classmethod
    def backfill_delivery(cls, user_id: int) -> list[ReceiptSnapshot]:
        """
        Deliver every message the user missed while offline.

        Covers all chats the user actively belongs to. Best-effort: a failure
        on one message is logged and the rest continue. Each message yields
        at most one snapshot.
        """
        chat_ids = Participant.objects.filter(user_id=user_id, left_at__isnull=True).values(
            "chat_id"
        )
        delivered = MessageReceipt.objects.filter(
            user_id=user_id, delivered_at__isnull=False
        ).values("message_id")
        pending = (
            Message.objects.select_related("chat")
            .filter(chat_id__in=chat_ids)
            .exclude(pk__in=delivered)
            .order_by("created_at", "id")
        )

        snapshots = []
        for message in pending:
            try:
                snapshot = cls._deliver(message, user_id)
            except Exception:
                cls.get_logger().exception(
                    f"Delivery backfill failed for message {message.id} and user {user_id}"
                )
                continue
            if snapshot.changed:
                snapshots.append(snapshot)

        if snapshots:
            cls.get_logger().info(f"Backfilled delivery of {len(snapshots)} messages to {user_id}")
        return snapshots

    @classmethod
    def backfill_read(cls, user_id: int, chat_id: int) -> list[ReceiptSnapshot]:
        """
        Mark every unread message of one chat as read by the user.

        Called when the user opens (joins) the chat. Same best-effort rules
        as backfill_delivery. Non-members get nothing.
        """
        if not ChatService.is_member(user_id, chat_id):
            return []

        read = MessageReceipt.objects.filter(user_id=user_id, read_at__isnull=False).values(
            "message_id"
        )
        pending = (
            Message.objects.select_related("chat")
            .filter(chat_id=chat_id)
            .exclude(pk__in=read)
            .order_by("created_at", "id")
        )

        snapshots = []
        for message in pending:
            try:
                snapshot = cls._read(message, user_id)
            except Exception:
                cls.get_logger().exception(
                    f"Read backfill failed for message {message.id} and user {user_id}"
                )
                continue
            if snapshot.changed:
                snapshots.append(snapshot)
        return snapshots


# =============================================================================
# Message Service
# =============================================================================


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        send_message: Send a message (membership, mute, mentions, reply checks)
        fetch_history: Messages of a chat, oldest first
        search_messages: Case-insensitive substring search
        pin_message / unpin_message: Pinning (group admins only)
    """

    @classmethod
    def send_message(
        cls,
        sender: User,
        chat_id: int,
        content: str,
        content_type: str = MessageContentType.TEXT,
        reply_to_id: int | None = None,
        mention_ids: list[int] | None = None,
    ) -> ServiceResult[Message]:
        """
        Send a message to a chat.

        The sender is recorded as delivered and read. Mentions outside the
        chat are dropped. The chat's latest_message pointer is updated in a
        separate write after the message has committed.

        Returns:
            ServiceResult with the message_detail read model

        Error codes:
            CHAT_NOT_FOUND, NOT_PARTICIPANT, MUTED, EMPTY_CONTENT,
            CONTENT_TOO_LONG, INVALID_CONTENT_TYPE, INVALID_REPLY
        """
        chat = Chat.objects.filter(pk=chat_id).first()
        if chat is None:
            return ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")

        sender_participant = chat.get_active_participant_for_user(sender)
        if sender_participant is None:
            return ServiceResult.failure(
                "You are not a participant in this chat",
                error_code="NOT_PARTICIPANT",
            )
        if chat.is_group and sender_participant.is_muted:
            return ServiceResult.failure(
                "You are muted in this group",
                error_code="MUTED",
            )

        content = content.strip() if content else ""
        if len(content) < MESSAGE_CONFIG.MIN_CONTENT_LENGTH:
            return ServiceResult.failure(
                "Message content cannot be empty",
                error_code="EMPTY_CONTENT",
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message exceeds {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
            )
        if content_type not in MessageContentType.values:
            return ServiceResult.failure(
                f"Unsupported content type '{content_type}'",
                error_code="INVALID_CONTENT_TYPE",
            )

        reply_to = None
        if reply_to_id is not None:
            reply_to = Message.objects.filter(pk=reply_to_id, chat_id=chat.id).first()
            if reply_to is None:
                return ServiceResult.failure(
                    "Replied message does not belong to this chat",
                    error_code="INVALID_REPLY",
                )

        member_ids = set(chat.user_ids())
        mentions = [uid for uid in dict.fromkeys(mention_ids or []) if uid in member_ids]

        with cls.atomic():
            message = Message.objects.create(
                chat=chat,
                sender=sender,
                content=content,
                content_type=content_type,
                reply_to=reply_to,
            )
            if mentions:
                message.mentions.set(mentions)
            now = timezone.now()
            MessageReceipt.objects.create(
                message=message, user=sender, delivered_at=now, read_at=now
            )
            ReceiptService._recompute_is_read(message.id)

        Chat.objects.filter(pk=chat.pk).update(latest_message=message, updated_at=timezone.now())

        cls.get_logger().info(f"User {sender.id} sent message {message.id} to chat {chat.id}")
        return ServiceResult.success(selectors.message_detail(message.id))

    @classmethod
    def check_relay(cls, user_id: int, message_id: int, chat_id: int) -> ServiceResult[Message]:
        """
        Validate a live relay of a stored message.

        The relaying user must be an active participant of chat_id, the
        message must belong to that chat, and the user must be its sender.

        Error codes:
            NOT_PARTICIPANT, MESSAGE_NOT_FOUND, NOT_SENDER
        """
        if not ChatService.is_member(user_id, chat_id):
            return ServiceResult.failure(
                "You are not a participant in this chat",
                error_code="NOT_PARTICIPANT",
            )
        message = Message.objects.filter(pk=message_id, chat_id=chat_id).first()
        if message is None:
            return ServiceResult.failure(
                "Message not found in this chat", error_code="MESSAGE_NOT_FOUND"
            )
        if message.sender_id != user_id:
            return ServiceResult.failure(
                "Only the sender can relay a message", error_code="NOT_SENDER"
            )
        return ServiceResult.success(message)

    @classmethod
    def fetch_history(
        cls,
        user: User,
        chat_id: int,
        before_id: int | None = None,
        limit: int = MESSAGE_CONFIG.HISTORY_DEFAULT_PAGE_SIZE,
    ) -> ServiceResult[list[Message]]:
        """
        Error codes:
            CHAT_NOT_FOUND, NOT_PARTICIPANT
        """
        access = cls._check_access(user, chat_id)
        if access is not None:
            return access
        limit = max(1, min(limit, MESSAGE_CONFIG.HISTORY_MAX_PAGE_SIZE))
        return ServiceResult.success(selectors.message_history(chat_id, before_id, limit))

    @classmethod
    def search_messages(cls, user: User, chat_id: int, query: str) -> ServiceResult[list[Message]]:
        """
        Error codes:
            CHAT_NOT_FOUND, NOT_PARTICIPANT, QUERY_TOO_SHORT
        """
        access = cls._check_access(user, chat_id)
        if access is not None:
            return access
        query = (query or "").strip()
        if len(query) < MESSAGE_CONFIG.SEARCH_MIN_QUERY_LENGTH:
            return ServiceResult.failure("Search query is empty", error_code="QUERY_TOO_SHORT")
        return ServiceResult.success(
            selectors.search_messages(chat_id, query, MESSAGE_CONFIG.SEARCH_MAX_RESULTS)
        )

    @classmethod
    def _check_access(cls, user: User, chat_id: int) -> ServiceResult | None:
        if not Chat.objects.filter(pk=chat_id).exists():
            return ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")
        if not ChatService.is_member(user.id, chat_id):
            return ServiceResult.failure(
                "You are not a participant in this chat",
                error_code="NOT_PARTICIPANT",
            )
        return None

    @classmethod
    def _load_pin_target(cls, actor: User, message_id: int) -> ServiceResult | Message:
        message = Message.objects.select_related("chat").filter(pk=message_id).first()
        if message is None:
            return ServiceResult.failure("Message not found", error_code="MESSAGE_NOT_FOUND")
        participant = message.chat.get_active_participant_for_user(actor)
        if participant is None:
            return ServiceResult.failure(
                "You are not a participant in this chat",
                error_code="NOT_PARTICIPANT",
            )
        if message.chat.is_group and not participant.is_admin_or_owner:
            return ServiceResult.failure(
                "Only group admins can pin messages",
                error_code="NOT_ADMIN",
            )
        return message

    @classmethod
    def pin_message(cls, actor: User, message_id: int) -> ServiceResult[Chat]:
        """
        Pin a message in its chat. Group chats require an admin.

        Error codes:
            MESSAGE_NOT_FOUND, NOT_PARTICIPANT, NOT_ADMIN
        """
        loaded = cls._load_pin_target(actor, message_id)
        if isinstance(loaded, ServiceResult):
            return loaded
        loaded.chat.pinned_messages.add(loaded)
        cls.get_logger().info(f"User {actor.id} pinned message {message_id}")
        return ServiceResult.success(selectors.chat_with_members(loaded.chat_id))

    @classmethod
    def unpin_message(cls, actor: User, message_id: int) -> ServiceResult[Chat]:
        """Unpin a message. Same permissions as pin_message."""
        loaded = cls._load_pin_target(actor, message_id)
        if isinstance(loaded, ServiceResult):
            return loaded
        loaded.chat.pinned_messages.remove(loaded)
        cls.get_logger().info(f"User {actor.id} unpinned message {message_id}")
        return ServiceResult.success(selectors.chat_with_members(loaded.chat_id))


# =============================================================================
# Reaction Service
# =============================================================================


class ReactionService(BaseService):
    """
    Emoji reactions: at most one per user per message, upserted by user.
    """

    @classmethod
    def _validate_emoji(cls, emoji: str) -> bool:
        if not emoji or not emoji.strip():
            return False
        return len(emoji.strip()) <= REACTION_CONFIG.MAX_EMOJI_LENGTH

    @classmethod
    def add_reaction(cls, message_id: int, user: User, emoji: str) -> ServiceResult[Message]:
        """
        Set the user's reaction on a message, replacing any previous one.

        Error codes:
            INVALID_EMOJI, MESSAGE_NOT_FOUND, NOT_PARTICIPANT
        """
        if not cls._validate_emoji(emoji):
            return ServiceResult.failure("Invalid emoji", error_code="INVALID_EMOJI")

        loaded = ReceiptService._load_for_member(message_id, user.id)
        if isinstance(loaded, ServiceResult):
            return loaded

        MessageReaction.objects.update_or_create(
            message_id=message_id, user=user, defaults={"emoji": emoji.strip()}
        )
        cls.get_logger().debug(f"User {user.id} reacted {emoji} on message {message_id}")
        return ServiceResult.success(selectors.message_detail(message_id))

    @classmethod
    def remove_reaction(cls, message_id: int, user: User) -> ServiceResult[Message]:
        """
        Error codes:
            MESSAGE_NOT_FOUND, NOT_PARTICIPANT, REACTION_NOT_FOUND
        """
        loaded = ReceiptService._load_for_member(message_id, user.id)
        if isinstance(loaded, ServiceResult):
            return loaded

        deleted, _ = MessageReaction.objects.filter(message_id=message_id, user=user).delete()
        if not deleted:
            return ServiceResult.failure(
                "You have not reacted to this message",
                error_code="REACTION_NOT_FOUND",
            )
        return ServiceResult.success(selectors.message_detail(message_id))
