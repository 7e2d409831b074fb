"""FCM message construction and error translation."""

import asyncio

import pytest
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from pushrelay.services.dispatcher import gateway as gateway_module
from pushrelay.services.dispatcher.gateway import (
    FcmGateway,
    GatewayError,
    GatewayUnreachable,
    InvalidPayload,
    InvalidTarget,
    build_message,
    translate_error,
)
from pushrelay.services.dispatcher.schemas import NotificationPayload, PlatformOptions


PAYLOAD = NotificationPayload(title="Hi", body="there", data={"chat_id": "42"})
OPTIONS = PlatformOptions(channel_id="high_importance_channel", sound="default", priority="high", badge=1)


def test_build_message_maps_all_fields():
    message = build_message("tok1", PAYLOAD, OPTIONS)

    assert message.token == "tok1"
    assert message.notification.title == "Hi"
    assert message.notification.body == "there"
    assert message.data == {"chat_id": "42"}
    assert message.android.priority == "high"
    assert message.android.notification.channel_id == "high_importance_channel"
    assert message.android.notification.sound == "default"
    assert message.android.notification.priority == "high"
    assert message.android.notification.visibility == "public"
    assert message.android.notification.default_vibrate_timings is True
    assert message.apns.payload.aps.sound == "default"
    assert message.apns.payload.aps.badge == 1


def test_build_message_normal_priority():
    message = build_message("tok1", PAYLOAD, OPTIONS.model_copy(update={"priority": "normal"}))

    assert message.android.priority == "normal"
    assert message.android.notification.priority == "default"


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (messaging.UnregisteredError("token gone"), InvalidTarget),
        (messaging.SenderIdMismatchError("wrong sender"), InvalidTarget),
        (firebase_exceptions.NotFoundError("not found"), InvalidTarget),
        (firebase_exceptions.InvalidArgumentError("bad payload"), InvalidPayload),
        (firebase_exceptions.UnavailableError("try later"), GatewayUnreachable),
        (firebase_exceptions.DeadlineExceededError("timeout"), GatewayUnreachable),
        (firebase_exceptions.InternalError("server error"), GatewayUnreachable),
        (ValueError("data must be strings"), InvalidPayload),
        (ConnectionError("reset"), GatewayUnreachable),
        (firebase_exceptions.PermissionDeniedError("denied"), GatewayError),
        (RuntimeError("?"), GatewayError),
    ],
)
def test_translate_error(exc, expected):
    translated = translate_error(exc)

    assert type(translated) is expected
    assert str(translated) == str(exc)


def test_translate_error_keeps_firebase_code():
    translated = translate_error(firebase_exceptions.UnavailableError("try later"))

    assert translated.code == firebase_exceptions.UNAVAILABLE


def test_send_returns_gateway_message_id(monkeypatch):
    sent = []

    def fake_send(message, dry_run=False, app=None):
        sent.append((message, app))
        return "projects/demo/messages/1"

    monkeypatch.setattr(gateway_module.messaging, "send", fake_send)
    app = object()

    message_id = asyncio.run(FcmGateway(app=app).send("tok1", PAYLOAD, OPTIONS))

    assert message_id == "projects/demo/messages/1"
    assert sent[0][0].token == "tok1"
    assert sent[0][1] is app


def test_send_translates_sdk_errors(monkeypatch):
    def fake_send(message, dry_run=False, app=None):
        raise messaging.UnregisteredError("Requested entity was not found.")

    monkeypatch.setattr(gateway_module.messaging, "send", fake_send)

    with pytest.raises(InvalidTarget) as excinfo:
        asyncio.run(FcmGateway(app=object()).send("stale", PAYLOAD, OPTIONS))
    assert excinfo.value.code == firebase_exceptions.NOT_FOUND
