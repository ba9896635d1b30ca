"""
Tests for the chat REST API.

Covers:
- Authentication
- Direct chat access (201 on create, 200 when it exists)
- Group endpoints, status mapping of service error codes
- Messages: send, history, search
- Receipts, pinning, reactions
- Event publishing after successful writes
"""

from unittest.mock import ANY, patch

import pytest
from rest_framework import status

from chat.broadcast import chat_group
from chat.constants import CHAT_EVENTS
from chat.dedup import get_dedup_filter
from chat.models import Chat, Message

BASE = "/api/v1/chat"


@pytest.fixture
def router():
    """Broadcast router seen by the views, replaced by a mock."""
    with patch("chat.views.get_broadcast_router") as get_router:
        yield get_router.return_value


def ids(users):
    return [user["id"] for user in users]


# =============================================================================
# Auth
# =============================================================================


@pytest.mark.django_db
class TestAuth:
    def test_requires_authentication(self, api_client):
        response = api_client.get(f"{BASE}/chats/")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# =============================================================================
# Chats
# =============================================================================


@pytest.mark.django_db
class TestDirectChat:
    def test_create_then_reuse(self, client_for, alice, bob):
        client = client_for(alice)

        created = client.post(f"{BASE}/chats/", {"user_id": bob.id}, format="json")
        again = client_for(bob).post(f"{BASE}/chats/", {"user_id": alice.id}, format="json")

        assert created.status_code == status.HTTP_201_CREATED
        assert again.status_code == status.HTTP_200_OK
        assert created.data["id"] == again.data["id"]
        assert created.data["chat_type"] == "direct"
        assert sorted(ids(created.data["users"])) == sorted([alice.id, bob.id])
        assert created.data["admins"] == []
        assert created.data["owner"] is None
        assert Chat.objects.count() == 1

    def test_self_chat_rejected(self, client_for, alice):
        response = client_for(alice).post(f"{BASE}/chats/", {"user_id": alice.id}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "SAME_USER"

    def test_unknown_user(self, client_for, alice):
        response = client_for(alice).post(f"{BASE}/chats/", {"user_id": 999999}, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "USER_NOT_FOUND"

    def test_invalid_body_uses_error_shape(self, client_for, alice):
        response = client_for(alice).post(f"{BASE}/chats/", {"user_id": "abc"}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "VALIDATION_ERROR"
        assert "user_id" in response.data["errors"]


@pytest.mark.django_db
class TestChatList:
    def test_latest_activity_first(self, client_for, alice, group, direct_chat, send):
        send(alice, direct_chat)
        send(alice, group, "newest")

        response = client_for(alice).get(f"{BASE}/chats/")

        assert response.status_code == status.HTTP_200_OK
        assert [chat["id"] for chat in response.data] == [group.id, direct_chat.id]
        assert response.data[0]["latest_message"]["content"] == "newest"

    def test_left_groups_are_hidden(self, client_for, bob, group, direct_chat):
        client = client_for(bob)
        client.post(f"{BASE}/groups/{group.id}/leave/")

        response = client.get(f"{BASE}/chats/")

        assert [chat["id"] for chat in response.data] == [direct_chat.id]

    def test_groups_endpoint_lists_groups_only(self, client_for, alice, group, direct_chat):
        response = client_for(alice).get(f"{BASE}/groups/")

        assert [chat["id"] for chat in response.data] == [group.id]

    def test_retrieve_requires_membership(self, client_for, dave, group):
        response = client_for(dave).get(f"{BASE}/chats/{group.id}/")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "NOT_PARTICIPANT"

    def test_retrieve_missing(self, client_for, alice):
        response = client_for(alice).get(f"{BASE}/chats/999999/")

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Messages
# =============================================================================


@pytest.mark.django_db
class TestSendMessage:
    def test_send_publishes_and_records_dedup(self, client_for, alice, bob, direct_chat, router):
        response = client_for(alice).post(
            f"{BASE}/chats/{direct_chat.id}/messages/", {"content": "hi"}, format="json"
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["content"] == "hi"
        assert response.data["sender"]["id"] == alice.id
        assert response.data["delivered_by"] == [alice.id]
        assert response.data["read_by"] == [alice.id]
        assert response.data["is_read"] is False
        router.publish_sync.assert_any_call(
            chat_group(direct_chat.id), CHAT_EVENTS.NEW_MESSAGE, response.data
        )
        assert get_dedup_filter().should_process(response.data["id"]) is False

    def test_online_recipient_is_delivered(self, client_for, alice, bob, direct_chat, router):
        from chat.presence import get_presence_registry

        get_presence_registry()._connections[bob.id] = "bob-conn"

        response = client_for(alice).post(
            f"{BASE}/chats/{direct_chat.id}/messages/", {"content": "hi"}, format="json"
        )

        assert response.data["delivered_by"] == [alice.id, bob.id]
        router.publish_sync.assert_any_call(
            chat_group(direct_chat.id), CHAT_EVENTS.MESSAGE_DELIVERED, ANY
        )

    def test_mentions_notify_users(self, client_for, alice, bob, carol, dave, group, router):
        response = client_for(alice).post(
            f"{BASE}/chats/{group.id}/messages/",
            {"content": "hey @bob", "mentions": [bob.id, dave.id, alice.id]},
            format="json",
        )

        assert sorted(ids(response.data["mentions"])) == sorted([bob.id, alice.id])
        router.publish_to_users_sync.assert_called_once_with(
            [bob.id], CHAT_EVENTS.MENTIONED_IN_MESSAGE, response.data
        )

    def test_reply_must_be_in_chat(self, client_for, alice, group, direct_chat, send, router):
        elsewhere = send(alice, direct_chat)

        response = client_for(alice).post(
            f"{BASE}/chats/{group.id}/messages/",
            {"content": "re", "reply_to": elsewhere.id},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INVALID_REPLY"

    def test_reply_preview(self, client_for, alice, bob, group, send, router):
        original = send(alice, group, "question")

        response = client_for(bob).post(
            f"{BASE}/chats/{group.id}/messages/",
            {"content": "answer", "reply_to": original.id},
            format="json",
        )

        assert response.data["reply_to"]["id"] == original.id
        assert response.data["reply_to"]["content"] == "question"

    def test_error_codes(self, client_for, alice, bob, dave, group, router):
        alice_client = client_for(alice)
        alice_client.post(f"{BASE}/groups/{group.id}/mute-user/", {"user_id": bob.id}, format="json")
        url = f"{BASE}/chats/{group.id}/messages/"

        muted = client_for(bob).post(url, {"content": "x"}, format="json")
        outsider = client_for(dave).post(url, {"content": "x"}, format="json")
        empty = alice_client.post(url, {"content": "   "}, format="json")
        bad_type = alice_client.post(url, {"content": "x", "content_type": "video"}, format="json")

        assert (muted.status_code, muted.data["error_code"]) == (403, "MUTED")
        assert (outsider.status_code, outsider.data["error_code"]) == (403, "NOT_PARTICIPANT")
        assert (empty.status_code, empty.data["error_code"]) == (400, "EMPTY_CONTENT")
        assert bad_type.data["error_code"] == "INVALID_CONTENT_TYPE"
        assert not Message.objects.exists()


@pytest.mark.django_db
class TestHistoryAndSearch:
    def test_history_pages_backwards(self, client_for, alice, group, send):
        messages = [send(alice, group, f"m{i}") for i in range(5)]
        client = client_for(alice)

        latest = client.get(f"{BASE}/chats/{group.id}/messages/", {"limit": 2})
        older = client.get(
            f"{BASE}/chats/{group.id}/messages/", {"limit": 2, "before": messages[3].id}
        )

        assert [m["content"] for m in latest.data] == ["m3", "m4"]
        assert [m["content"] for m in older.data] == ["m1", "m2"]

    def test_history_limit_validated(self, client_for, alice, group):
        response = client_for(alice).get(f"{BASE}/chats/{group.id}/messages/", {"limit": 0})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "VALIDATION_ERROR"

    def test_history_requires_membership(self, client_for, dave, group):
        response = client_for(dave).get(f"{BASE}/chats/{group.id}/messages/")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_search_is_case_insensitive(self, client_for, alice, group, send):
        send(alice, group, "Lunch at noon?")
        send(alice, group, "nothing here")

        response = client_for(alice).get(f"{BASE}/chats/{group.id}/messages/search/", {"q": "LUNCH"})

        assert [m["content"] for m in response.data] == ["Lunch at noon?"]

    def test_search_needs_query(self, client_for, alice, group):
        response = client_for(alice).get(f"{BASE}/chats/{group.id}/messages/search/")

        assert response.data["error_code"] == "QUERY_TOO_SHORT"


# =============================================================================
# Groups
# =============================================================================


@pytest.mark.django_db
class TestGroupEndpoints:
    def test_create(self, client_for, alice, bob, carol, router):
        response = client_for(alice).post(
            f"{BASE}/groups/",
            {"name": "Trip", "member_ids": [bob.id, carol.id]},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["owner"]["id"] == alice.id
        assert ids(response.data["admins"]) == [alice.id]
        assert ids(response.data["users"]) == [alice.id, bob.id, carol.id]
        router.publish_to_users_sync.assert_called_once_with(
            [bob.id, carol.id], CHAT_EVENTS.ADDED_TO_GROUP, response.data
        )

    def test_create_too_few_members(self, client_for, alice, bob):
        response = client_for(alice).post(
            f"{BASE}/groups/", {"name": "Pair", "member_ids": [bob.id]}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "TOO_FEW_MEMBERS"

    def test_update_info(self, client_for, alice, group, router):
        response = client_for(alice).patch(
            f"{BASE}/groups/{group.id}/", {"name": "Renamed"}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["name"] == "Renamed"
        router.publish_sync.assert_called_once_with(
            chat_group(group.id), CHAT_EVENTS.GROUP_INFO_UPDATED, response.data
        )

    def test_update_requires_a_field(self, client_for, alice, group):
        response = client_for(alice).patch(f"{BASE}/groups/{group.id}/", {}, format="json")

        assert response.data["error_code"] == "VALIDATION_ERROR"

    def test_update_by_member_forbidden(self, client_for, bob, group, router):
        response = client_for(bob).patch(f"{BASE}/groups/{group.id}/", {"name": "x"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data == {"error": ANY, "error_code": "NOT_ADMIN"}
        router.publish_sync.assert_not_called()

    def test_remove_members(self, client_for, alice, bob, group, router):
        response = client_for(alice).post(
            f"{BASE}/groups/{group.id}/remove-members/", {"user_ids": [bob.id]}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert bob.id not in ids(response.data["users"])
        router.publish_to_users_sync.assert_called_once_with(
            [bob.id],
            CHAT_EVENTS.REMOVED_FROM_GROUP,
            {"chat_id": group.id, "removed_by": alice.id},
        )

    def test_last_admin_cannot_leave(self, client_for, alice, group):
        response = client_for(alice).post(f"{BASE}/groups/{group.id}/leave/")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "LAST_ADMIN"

    def test_transfer_and_mute(self, client_for, alice, carol, group, router):
        alice_client = client_for(alice)

        alice_client.post(f"{BASE}/groups/{group.id}/promote-admin/", {"user_id": carol.id}, format="json")
        transferred = alice_client.post(
            f"{BASE}/groups/{group.id}/transfer-ownership/", {"user_id": carol.id}, format="json"
        )
        mute_old_owner = client_for(carol).post(
            f"{BASE}/groups/{group.id}/mute-user/", {"user_id": alice.id}, format="json"
        )

        assert transferred.status_code == status.HTTP_200_OK
        assert transferred.data["owner"]["id"] == carol.id
        assert ids(transferred.data["admins"]) == [carol.id, alice.id]
        router.publish_sync.assert_any_call(
            chat_group(group.id), CHAT_EVENTS.GROUP_OWNERSHIP_TRANSFERRED, transferred.data
        )
        assert mute_old_owner.status_code == status.HTTP_409_CONFLICT
        assert mute_old_owner.data["error_code"] == "CANNOT_MUTE_ADMIN"

    def test_mute_and_unmute(self, client_for, alice, bob, group, router):
        client = client_for(alice)

        muted = client.post(f"{BASE}/groups/{group.id}/mute-user/", {"user_id": bob.id}, format="json")
        unmuted = client.post(f"{BASE}/groups/{group.id}/unmute-user/", {"user_id": bob.id}, format="json")

        assert ids(muted.data["muted_users"]) == [bob.id]
        assert unmuted.data["muted_users"] == []

    def test_delete(self, client_for, alice, bob, carol, group, router):
        response = client_for(alice).delete(f"{BASE}/groups/{group.id}/")

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not Chat.objects.filter(pk=group.id).exists()
        router.publish_to_users_sync.assert_called_once_with(
            [alice.id, bob.id, carol.id], CHAT_EVENTS.GROUP_DELETED, {"chat_id": group.id}
        )

    def test_delete_by_admin_forbidden(self, client_for, alice, bob, group):
        client_for(alice).post(f"{BASE}/groups/{group.id}/promote-admin/", {"user_id": bob.id}, format="json")

        response = client_for(bob).delete(f"{BASE}/groups/{group.id}/")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "NOT_OWNER"

    def test_add_members_on_direct_chat(self, client_for, alice, carol, direct_chat):
        response = client_for(alice).post(
            f"{BASE}/groups/{direct_chat.id}/add-members/", {"user_ids": [carol.id]}, format="json"
        )

        assert response.data["error_code"] == "NOT_GROUP"


# =============================================================================
# Receipts, Pins, Reactions
# =============================================================================


@pytest.mark.django_db
class TestMessageActions:
    def test_read_returns_snapshot_and_publishes_once(self, client_for, alice, bob, direct_chat, send, router):
        message = send(alice, direct_chat)
        client = client_for(bob)

        first = client.post(f"{BASE}/messages/{message.id}/read/")
        second = client.post(f"{BASE}/messages/{message.id}/read/")

        assert first.status_code == status.HTTP_200_OK
        assert first.data["read_by"] == [alice.id, bob.id]
        assert first.data["delivered_by"] == [alice.id, bob.id]
        assert first.data["is_read"] is True
        assert second.data == first.data
        router.publish_sync.assert_called_once_with(
            chat_group(direct_chat.id), CHAT_EVENTS.MESSAGE_STATUS_UPDATE, first.data
        )

    def test_delivered(self, client_for, alice, bob, direct_chat, send, router):
        message = send(alice, direct_chat)

        response = client_for(bob).post(f"{BASE}/messages/{message.id}/delivered/")

        assert response.data["delivered_by"] == [alice.id, bob.id]
        assert response.data["is_read"] is False

    def test_receipt_by_outsider(self, client_for, alice, dave, direct_chat, send):
        message = send(alice, direct_chat)

        response = client_for(dave).post(f"{BASE}/messages/{message.id}/read/")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_pin_and_unpin(self, client_for, alice, group, send, router):
        message = send(alice, group)
        client = client_for(alice)

        pinned = client.post(f"{BASE}/messages/{message.id}/pin/")
        unpinned = client.delete(f"{BASE}/messages/{message.id}/pin/")

        assert pinned.data["pinned_messages"] == [message.id]
        assert unpinned.data["pinned_messages"] == []
        router.publish_sync.assert_any_call(
            chat_group(group.id),
            CHAT_EVENTS.MESSAGE_PINNED,
            {"chat_id": group.id, "message_id": message.id},
        )

    def test_member_cannot_pin_in_group(self, client_for, alice, bob, group, send):
        message = send(alice, group)

        response = client_for(bob).post(f"{BASE}/messages/{message.id}/pin/")

        assert response.data["error_code"] == "NOT_ADMIN"

    def test_reaction_replaced_then_removed(self, client_for, alice, bob, group, send, router):
        message = send(alice, group)
        client = client_for(bob)

        client.put(f"{BASE}/messages/{message.id}/reactions/", {"emoji": "👍"}, format="json")
        replaced = client.put(f"{BASE}/messages/{message.id}/reactions/", {"emoji": "🎉"}, format="json")
        removed = client.delete(f"{BASE}/messages/{message.id}/reactions/")
        missing = client.delete(f"{BASE}/messages/{message.id}/reactions/")

        assert [(r["user"]["id"], r["emoji"]) for r in replaced.data["reactions"]] == [(bob.id, "🎉")]
        assert removed.data["reactions"] == []
        assert missing.status_code == status.HTTP_404_NOT_FOUND
        assert missing.data["error_code"] == "REACTION_NOT_FOUND"

    def test_blank_emoji(self, client_for, alice, group, send):
        message = send(alice, group)

        response = client_for(alice).put(f"{BASE}/messages/{message.id}/reactions/", {"emoji": " "}, format="json")

        assert response.data["error_code"] == "INVALID_EMOJI"

    def test_unknown_message(self, client_for, alice):
        response = client_for(alice).post(f"{BASE}/messages/999999/read/")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "MESSAGE_NOT_FOUND"
