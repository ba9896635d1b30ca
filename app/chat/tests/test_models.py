"""Tests for chat models and their database constraints."""

from datetime import timedelta
from types import SimpleNamespace

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from chat.models import (
    DirectChatPair,
    MessageReceipt,
    Participant,
    ParticipantRole,
    order_admins,
)
from chat.tests.factories import (
    DirectChatFactory,
    GroupChatFactory,
    MessageFactory,
    MessageReactionFactory,
    ParticipantFactory,
)


def _participant(pk, role, position=None):
    return SimpleNamespace(id=pk, user_id=pk, role=role, admin_position=position)


class TestOrderAdmins:
    def test_owner_leads(self):
        participants = [
            _participant(1, ParticipantRole.ADMIN, 0),
            _participant(2, ParticipantRole.MEMBER),
            _participant(3, ParticipantRole.OWNER, 5),
        ]

        assert [p.user_id for p in order_admins(participants)] == [3, 1]

    def test_admins_follow_position(self):
        participants = [
            _participant(1, ParticipantRole.OWNER, 0),
            _participant(2, ParticipantRole.ADMIN, 3),
            _participant(3, ParticipantRole.ADMIN, -1),
            _participant(4, ParticipantRole.ADMIN, None),
        ]

        assert [p.user_id for p in order_admins(participants)] == [1, 3, 2, 4]


class TestDirectChatPair:
    def test_canonical_order(self):
        assert DirectChatPair.canonical(9, 4) == (4, 9)
        assert DirectChatPair.canonical(4, 9) == (4, 9)


@pytest.mark.django_db
class TestChatModel:
    def test_group_derived_sets(self, alice, bob, carol):
        chat = GroupChatFactory(created_by=alice, members=[bob, carol])

        assert chat.is_group
        assert chat.user_ids() == [alice.id, bob.id, carol.id]
        assert chat.admin_ids() == [alice.id]
        assert chat.owner_id() == alice.id
        assert chat.muted_ids() == []

    def test_direct_chat_has_no_roles(self, alice, bob):
        chat = DirectChatFactory(user1=alice, user2=bob)

        assert chat.is_direct
        assert chat.admin_ids() == []
        assert chat.owner_id() is None

    def test_left_member_is_not_active(self, alice, bob, carol):
        chat = GroupChatFactory(created_by=alice, members=[bob, carol])
        Participant.objects.filter(chat=chat, user=bob).update(left_at=timezone.now())

        assert chat.user_ids() == [alice.id, carol.id]
        assert chat.get_active_participant_for_user(bob) is None


@pytest.mark.django_db
class TestConstraints:
    def test_one_active_membership(self, alice, bob):
        chat = GroupChatFactory(created_by=alice, members=[bob])

        with pytest.raises(IntegrityError), transaction.atomic():
            ParticipantFactory(chat=chat, user=bob)

    def test_one_active_owner(self, alice, bob):
        chat = GroupChatFactory(created_by=alice)

        with pytest.raises(IntegrityError), transaction.atomic():
            ParticipantFactory(chat=chat, user=bob, role=ParticipantRole.OWNER)

    def test_admin_cannot_be_muted(self, alice, bob):
        chat = GroupChatFactory(created_by=alice)

        with pytest.raises(IntegrityError), transaction.atomic():
            ParticipantFactory(chat=chat, user=bob, role=ParticipantRole.ADMIN, is_muted=True)

    def test_pair_is_unique(self, alice, bob):
        DirectChatFactory(user1=alice, user2=bob)

        with pytest.raises(IntegrityError), transaction.atomic():
            DirectChatFactory(user1=bob, user2=alice)

    def test_read_implies_delivered(self, alice):
        message = MessageFactory(chat=GroupChatFactory(created_by=alice))

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageReceipt.objects.create(message=message, user=alice, read_at=timezone.now())

    def test_one_reaction_per_user(self, alice):
        message = MessageFactory(chat=GroupChatFactory(created_by=alice))
        MessageReactionFactory(message=message, user=alice)

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageReactionFactory(message=message, user=alice, emoji="🎉")


@pytest.mark.django_db
class TestMessageModel:
    def test_receipt_orders(self, alice, bob):
        message = MessageFactory(chat=GroupChatFactory(created_by=alice, members=[bob]))
        earlier = timezone.now()
        MessageReceipt.objects.create(message=message, user=bob, delivered_at=earlier)
        MessageReceipt.objects.create(
            message=message,
            user=alice,
            delivered_at=earlier + timedelta(seconds=1),
            read_at=earlier + timedelta(seconds=1),
        )

        assert message.delivered_by_ids() == [bob.id, alice.id]
        assert message.read_by_ids() == [alice.id]

    def test_str_truncates(self, alice):
        message = MessageFactory(chat=GroupChatFactory(created_by=alice), content="x" * 80)

        assert str(message).endswith("x" * 50 + "...")
