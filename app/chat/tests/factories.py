"""
Factory Boy factories for chat models.

Provides realistic test data generation for:
- Chat: Direct and group chats
- Participant: User membership in chats
- Message: Text messages (no receipts; use MessageService for a real send)
- MessageReaction: Emoji reactions

Usage:
    from chat.tests.factories import (
        DirectChatFactory,
        GroupChatFactory,
        MessageFactory,
        ParticipantFactory,
    )

    # Group with owner and two members
    chat = GroupChatFactory(members=[alice, bob])

    # Direct chat between two users
    chat = DirectChatFactory(user1=alice, user2=bob)

    # Message in a chat
    message = MessageFactory(chat=chat, sender=alice)
"""

import factory

from authentication.tests.factories import UserFactory
from chat.models import (
    Chat,
    ChatType,
    DirectChatPair,
    Message,
    MessageContentType,
    MessageReaction,
    Participant,
    ParticipantRole,
)


class ParticipantFactory(factory.django.DjangoModelFactory):
    """
    Factory for Participant model.

    Examples:
        ParticipantFactory(chat=chat, user=user)
        ParticipantFactory(chat=chat, role=ParticipantRole.ADMIN, admin_position=1)
    """

    class Meta:
        model = Participant

    chat = factory.SubFactory("chat.tests.factories.GroupChatFactory")
    user = factory.SubFactory(UserFactory)
    role = ParticipantRole.MEMBER
    is_muted = False
    admin_position = None


class GroupChatFactory(factory.django.DjangoModelFactory):
    """
    Factory for group chats.

    The creator becomes the owner. Pass members=[...] to add them as
    plain members in that order.

    Examples:
        chat = GroupChatFactory()
        chat = GroupChatFactory(created_by=alice, members=[bob, carol])
    """

    class Meta:
        model = Chat
        skip_postgeneration_save = True

    chat_type = ChatType.GROUP
    name = factory.Sequence(lambda n: f"Group {n}")
    created_by = factory.SubFactory(UserFactory)

    @factory.post_generation
    def members(self, create, extracted, **kwargs):
        """Add the owner, then the given members."""
        if not create:
            return
        Participant.objects.create(
            chat=self,
            user=self.created_by,
            role=ParticipantRole.OWNER,
            admin_position=0,
        )
        for user in extracted or []:
            Participant.objects.create(chat=self, user=user, role=ParticipantRole.MEMBER)


class DirectChatFactory(factory.django.DjangoModelFactory):
    """
    Factory for direct (1:1) chats.

    Creates the DirectChatPair and both participants.

    Examples:
        chat = DirectChatFactory()
        chat = DirectChatFactory(user1=alice, user2=bob)
    """

    class Meta:
        model = Chat

    chat_type = ChatType.DIRECT

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Create direct chat with participants and pair."""
        user1 = kwargs.pop("user1", None) or UserFactory()
        user2 = kwargs.pop("user2", None) or UserFactory()
        kwargs.setdefault("created_by", user1)

        chat = model_class.objects.create(*args, **kwargs)
        lower_id, higher_id = DirectChatPair.canonical(user1.id, user2.id)
        DirectChatPair.objects.create(chat=chat, user_lower_id=lower_id, user_higher_id=higher_id)
        Participant.objects.create(chat=chat, user=user1, role=None)
        Participant.objects.create(chat=chat, user=user2, role=None)
        return chat


class MessageFactory(factory.django.DjangoModelFactory):
    """
    Factory for Message model.

    Creates the row only: no receipts, is_read False.

    Examples:
        message = MessageFactory(chat=chat, sender=user)
        sticker = MessageFactory(content_type=MessageContentType.STICKER)
    """

    class Meta:
        model = Message

    chat = factory.SubFactory(GroupChatFactory)
    sender = factory.LazyAttribute(lambda o: o.chat.created_by)
    content = factory.Faker("sentence")
    content_type = MessageContentType.TEXT


class MessageReactionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = MessageReaction

    message = factory.SubFactory(MessageFactory)
    user = factory.SubFactory(UserFactory)
    emoji = "👍"
