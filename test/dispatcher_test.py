import pytest
from firebase_admin import messaging

from conftest import FakeDelivery, FakeStore, delivery_failure
from push_functions.delivery import FcmDelivery
from push_functions.dispatcher import DispatchEngine
from push_functions.exceptions import DeliveryFailure, MissingToken
from push_functions.recipients import RecipientResolver
from push_functions.schemas import Chat, ChatMessage, FanOutStatus, NotificationRequest, User


def offline_users(count):
    return {f"users/u{i}": {"fcmToken": f"t{i}", "isOnline": False, "name": f"User {i}"} for i in range(count)}


def make_engine(store, delivery, prune=False):
    return DispatchEngine(delivery, RecipientResolver(store), store, prune_invalid_tokens=prune)


def text_message(text="hello", sender="sender"):
    return ChatMessage(id="m1", chatId="c1", senderId=sender, type="text", text=text)


SENDER = User(id="sender", name="Alice")


@pytest.mark.asyncio
async def test_fan_out_isolates_failures():
    store = FakeStore(offline_users(4))
    delivery = FakeDelivery({"t2": delivery_failure("boom")})
    chat = Chat(id="c1", participants=["sender", "u0", "u1", "u2", "u3"])

    result = await make_engine(store, delivery).fan_out(text_message(), chat, SENDER)

    assert result.status == FanOutStatus.SENT
    assert len(delivery.messages) == 4
    assert [o.token for o in result.outcomes] == ["t0", "t1", "t2", "t3"]
    assert [o.success for o in result.outcomes] == [True, True, False, True]
    assert result.outcomes[2].error == "boom"
    assert result.success_count == 3
    assert result.failure_count == 1


@pytest.mark.asyncio
async def test_fan_out_captures_unexpected_errors():
    store = FakeStore(offline_users(2))
    delivery = FakeDelivery({"t0": RuntimeError("socket closed")})
    chat = Chat(id="c1", participants=["u0", "u1"])

    result = await make_engine(store, delivery).fan_out(text_message(), chat, SENDER)

    assert [o.success for o in result.outcomes] == [False, True]


@pytest.mark.asyncio
async def test_fan_out_without_recipients_sends_nothing():
    store = FakeStore({"users/u0": {"fcmToken": "t0", "isOnline": True}})
    delivery = FakeDelivery()
    chat = Chat(id="c1", participants=["sender", "u0"])

    result = await make_engine(store, delivery).fan_out(text_message(), chat, SENDER)

    assert result.status == FanOutStatus.NO_RECIPIENTS
    assert result.outcomes == []
    assert delivery.messages == []


@pytest.mark.asyncio
async def test_direct_chat_uses_sender_name_as_title():
    store = FakeStore(offline_users(1))
    delivery = FakeDelivery()
    chat = Chat(id="c1", participants=["sender", "u0"])

    await make_engine(store, delivery).fan_out(text_message("hi there"), chat, SENDER)

    message = delivery.messages[0]
    assert message.notification.title == "Alice"
    assert message.notification.body == "hi there"
    assert message.data["chatId"] == "c1"
    assert message.data["messageId"] == "m1"
    assert message.data["senderId"] == "sender"
    assert message.data["type"] == "new_message"


@pytest.mark.asyncio
async def test_group_chat_prefixes_sender_name():
    store = FakeStore(offline_users(1))
    delivery = FakeDelivery()
    message = ChatMessage(id="m1", chatId="c1", senderId="sender", type="image")

    await make_engine(store, delivery).fan_out(
        message, Chat(id="c1", participants=["u0"], isGroupChat=True, name="Hikers"), SENDER
    )
    await make_engine(store, delivery).fan_out(
        message, Chat(id="c1", participants=["u0"], isGroupChat=True), SENDER
    )

    assert delivery.messages[0].notification.title == "Hikers"
    assert delivery.messages[0].notification.body == "Alice: 📷 Photo"
    assert delivery.messages[1].notification.title == "Group Chat"


@pytest.mark.asyncio
async def test_unregistered_tokens_are_pruned():
    store = FakeStore(offline_users(2))
    unregistered = DeliveryFailure("gone", code="NOT_FOUND",
                                   cause=messaging.UnregisteredError("Requested entity was not found."))
    delivery = FakeDelivery({"t0": unregistered, "t1": delivery_failure()})
    chat = Chat(id="c1", participants=["u0", "u1"])

    await make_engine(store, delivery, prune=True).fan_out(text_message(), chat, SENDER)

    assert "fcmToken" not in store.docs["users/u0"]
    assert store.docs["users/u1"]["fcmToken"] == "t1"



class RefreshingDelivery(FakeDelivery):
    """Simulates the device registering a new token while the send is in flight"""

    def __init__(self, store, user_path, new_token):
        super().__init__()
        self.store = store
        self.user_path = user_path
        self.new_token = new_token

    def send(self, message):
        self.messages.append(message)
        self.store.docs[self.user_path]["fcmToken"] = self.new_token
        raise DeliveryFailure("gone", code="NOT_FOUND",
                              cause=messaging.UnregisteredError("Requested entity was not found."))


@pytest.mark.asyncio
async def test_token_refreshed_during_send_is_kept():
    store = FakeStore(offline_users(1))
    delivery = RefreshingDelivery(store, "users/u0", "t0-fresh")
    chat = Chat(id="c1", participants=["u0"])

    result = await make_engine(store, delivery, prune=True).fan_out(text_message(), chat, SENDER)

    assert result.failure_count == 1
    assert store.docs["users/u0"]["fcmToken"] == "t0-fresh"


@pytest.mark.asyncio
async def test_shared_dead_token_is_pruned_from_every_holder():
    store = FakeStore({
        "users/u0": {"fcmToken": "shared", "isOnline": False},
        "users/u1": {"fcmToken": "shared", "isOnline": False},
    })
    unregistered = DeliveryFailure("gone", code="NOT_FOUND",
                                   cause=messaging.UnregisteredError("Requested entity was not found."))
    delivery = FakeDelivery({"shared": unregistered})
    chat = Chat(id="c1", participants=["u0", "u1"])

    result = await make_engine(store, delivery, prune=True).fan_out(text_message(), chat, SENDER)

    assert len(delivery.messages) == 1
    assert len(result.outcomes) == 1
    assert "fcmToken" not in store.docs["users/u0"]
    assert "fcmToken" not in store.docs["users/u1"]

@pytest.mark.asyncio
async def test_send_single_requires_token():
    engine = make_engine(FakeStore(), FakeDelivery())

    with pytest.raises(MissingToken):
        await engine.send_single(NotificationRequest(title="Hi"))


@pytest.mark.asyncio
async def test_send_single_returns_receipt():
    delivery = FakeDelivery()
    engine = make_engine(FakeStore(), delivery)

    receipt = await engine.send_single(NotificationRequest(recipientToken="tok", title="Hi", body="Yo", timestamp=7))

    assert receipt == "projects/test/messages/1"
    assert delivery.tokens == ["tok"]
    assert delivery.messages[0].data == {"timestamp": "7"}


@pytest.mark.asyncio
async def test_send_single_propagates_delivery_failure():
    engine = make_engine(FakeStore(), FakeDelivery({"tok": delivery_failure("rejected")}))

    with pytest.raises(DeliveryFailure):
        await engine.send_single(NotificationRequest(recipientToken="tok"))


def test_is_invalid_token():
    assert FcmDelivery.is_invalid_token(DeliveryFailure("x", code="registration-token-not-registered"))
    assert not FcmDelivery.is_invalid_token(DeliveryFailure("x", code="INTERNAL"))
