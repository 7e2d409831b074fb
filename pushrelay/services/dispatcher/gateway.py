"""Push gateway boundary and its Firebase Cloud Messaging implementation.

The dispatcher only sees `send(target, payload, options) -> message_id` and
the `GatewayError` taxonomy below; Firebase specifics stay in this module.
"""

import asyncio
from typing import Protocol

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin import exceptions as firebase_exceptions
from google.auth import exceptions as google_auth_exceptions

from pushrelay.common.logging import logger
from pushrelay.services.dispatcher.schemas import NotificationPayload, PlatformOptions


CONFIGURATION_ERROR = "CONFIGURATION"


class GatewayError(Exception):
    """A push gateway send that did not deliver."""

    default_code = "UNKNOWN"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code


class GatewayUnreachable(GatewayError):
    default_code = "UNAVAILABLE"


class InvalidTarget(GatewayError):
    default_code = "INVALID_TARGET"


class InvalidPayload(GatewayError):
    default_code = "INVALID_PAYLOAD"


class PushGateway(Protocol):
    async def send(self, target: str, payload: NotificationPayload, options: PlatformOptions) -> str:
        ...


_TARGET_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
    firebase_exceptions.NotFoundError,
)
_UNREACHABLE_ERRORS = (
    firebase_exceptions.UnavailableError,
    firebase_exceptions.DeadlineExceededError,
    firebase_exceptions.InternalError,
    firebase_exceptions.UnknownError,
)


def translate_error(exc: Exception) -> GatewayError:
    """Map an SDK/transport exception onto the gateway error taxonomy."""

    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, _TARGET_ERRORS):
        return InvalidTarget(str(exc), exc.code)
    if isinstance(exc, firebase_exceptions.InvalidArgumentError):
        return InvalidPayload(str(exc), exc.code)
    if isinstance(exc, _UNREACHABLE_ERRORS):
        return GatewayUnreachable(str(exc), exc.code)
    if isinstance(exc, firebase_exceptions.FirebaseError):
        return GatewayError(str(exc), exc.code)
    # Message validation in the SDK raises plain ValueError/TypeError.
    if isinstance(exc, (ValueError, TypeError)):
        return InvalidPayload(str(exc))
    if isinstance(exc, OSError):
        return GatewayUnreachable(str(exc))
    return GatewayError(str(exc))


def build_message(target: str, payload: NotificationPayload, options: PlatformOptions) -> messaging.Message:
    """Translate one notification into an FCM message for a single device token."""

    high = options.priority == "high"
    return messaging.Message(
        token=target,
        notification=messaging.Notification(title=payload.title, body=payload.body),
        data=dict(payload.data),
        android=messaging.AndroidConfig(
            priority="high" if high else "normal",
            notification=messaging.AndroidNotification(
                channel_id=options.channel_id,
                sound=options.sound,
                priority="high" if high else "default",
                visibility="public",
                default_vibrate_timings=True,
            ),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound=options.sound, badge=options.badge)),
        ),
    )


class FcmGateway:
    """Sends single-device messages through the Firebase Admin SDK.

    `timeout_seconds` bounds both the SDK's HTTP timeout and the awaited call,
    so a send always finishes inside the per-record lock TTL.
    """

    def __init__(
        self,
        credentials_path: str | None = None,
        app: firebase_admin.App | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.credentials_path = credentials_path
        self.timeout_seconds = timeout_seconds
        self._app = app

    def ensure_app(self) -> firebase_admin.App:
        """Return the Firebase app, initialising it on first use.

        Credential problems raise `GatewayUnreachable` with code
        `CONFIGURATION`; they are an operator fault, not a bad message.
        """

        if self._app is not None:
            return self._app
        try:
            try:
                self._app = firebase_admin.get_app()
            except ValueError:
                if self.credentials_path:
                    cred = credentials.Certificate(self.credentials_path)
                else:
                    cred = credentials.ApplicationDefault()
                self._app = firebase_admin.initialize_app(cred, options={"httpTimeout": self.timeout_seconds})
                logger.info("firebase_app_initialized project_id=%s", self._app.project_id)
        except (ValueError, OSError, google_auth_exceptions.GoogleAuthError) as exc:
            logger.error("firebase_app_init_failed credentials_path=%s error=%s", self.credentials_path, exc)
            raise GatewayUnreachable(str(exc), code=CONFIGURATION_ERROR) from exc
        return self._app

    async def send(self, target: str, payload: NotificationPayload, options: PlatformOptions) -> str:
        """Send one message and return the gateway message id.

        Raises a `GatewayError` subclass on any failure.
        """

        app = self.ensure_app()
        try:
            message = build_message(target, payload, options)
            # The Admin SDK is blocking; keep the event loop free for other events.
            return await asyncio.wait_for(
                asyncio.to_thread(messaging.send, message, app=app),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise GatewayUnreachable(
                f"gateway send exceeded {self.timeout_seconds}s",
                code=firebase_exceptions.DEADLINE_EXCEEDED,
            ) from exc
        except Exception as exc:
            raise translate_error(exc) from exc
