"""Push notification provider implementations used by the application."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .config import PushConfig

logger = logging.getLogger(__name__)


class PushNotification(BaseModel):
    """Visible part of a push message."""

    title: str
    body: str
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class DeliveryCounts(BaseModel):
    """Per-token outcome of a multicast send or a topic (un)subscription."""

    success_count: int = Field(default=0, alias="successCount")
    failure_count: int = Field(default=0, alias="failureCount")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def _stringify_data(data: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if not data:
        return {}
    return {str(key): "" if value is None else str(value) for key, value in data.items()}


class PushProvider:
    """Base provider for outbound push delivery.

    Every operation returns ``None`` when the provider cannot deliver because
    it is not configured. Transport failures raise.
    """

    name = "base"

    def send_to_device(
        self,
        token: str,
        notification: PushNotification,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        raise NotImplementedError

    def send_to_many(
        self,
        tokens: Sequence[str],
        notification: PushNotification,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[DeliveryCounts]:
        raise NotImplementedError

    def send_to_topic(
        self,
        topic: str,
        notification: PushNotification,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        raise NotImplementedError

    def subscribe_to_topic(self, tokens: Sequence[str], topic: str) -> Optional[DeliveryCounts]:
        raise NotImplementedError

    def unsubscribe_from_topic(self, tokens: Sequence[str], topic: str) -> Optional[DeliveryCounts]:
        raise NotImplementedError

    @property
    def enabled(self) -> bool:
        return True

    def describe(self) -> Dict[str, str]:
        return {"push_provider": self.name}


class DisabledPushProvider(PushProvider):
    """Provider used when no push credentials are configured; logs and drops messages."""

    name = "disabled"

    @property
    def enabled(self) -> bool:
        return False

    def _skip(self, operation: str, **context: Any) -> None:
        logger.warning(
            "Push service not configured, skipping %s",
            operation,
            extra={"push_operation": operation, **context},
        )

    def send_to_device(self, token, notification, data=None):
        self._skip("send_to_device", push_title=notification.title)
        return None

    def send_to_many(self, tokens, notification, data=None):
        self._skip("send_to_many", push_title=notification.title, push_token_count=len(tokens))
        return None

    def send_to_topic(self, topic, notification, data=None):
        self._skip("send_to_topic", push_topic=topic)
        return None

    def subscribe_to_topic(self, tokens, topic):
        self._skip("subscribe_to_topic", push_topic=topic)
        return None

    def unsubscribe_from_topic(self, tokens, topic):
        self._skip("unsubscribe_from_topic", push_topic=topic)
        return None


class FirebasePushProvider(PushProvider):
    """Firebase Cloud Messaging provider backed by ``firebase_admin``."""

    name = "firebase"

    def __init__(
        self,
        *,
        project_id: Optional[str],
        client_email: Optional[str],
        private_key: Optional[str],
        credentials_path: Optional[str] = None,
        app_name: str = "tapiceros",
    ) -> None:
        self.project_id = project_id
        self.client_email = client_email
        self.private_key = private_key
        self.credentials_path = credentials_path
        self.app_name = app_name
        self._app = None
        self._lock = Lock()

    def _get_app(self):
        if self._app is not None:
            return self._app
        with self._lock:
            if self._app is None:
                import firebase_admin
                from firebase_admin import credentials

                if self.credentials_path:
                    certificate = credentials.Certificate(self.credentials_path)
                else:
                    certificate = credentials.Certificate(
                        {
                            "type": "service_account",
                            "project_id": self.project_id,
                            "client_email": self.client_email,
                            "private_key": self.private_key,
                            "token_uri": "https://oauth2.googleapis.com/token",
                        }
                    )
                self._app = firebase_admin.initialize_app(
                    certificate,
                    {"projectId": self.project_id} if self.project_id else None,
                    name=self.app_name,
                )
                logger.info("Firebase app initialized", extra={"firebase_project_id": self.project_id})
        return self._app

    @staticmethod
    def _platform_options(messaging):
        android = messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(sound="default"),
        )
        apns = messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
        )
        return android, apns

    @staticmethod
    def _notification(messaging, notification: PushNotification):
        return messaging.Notification(
            title=notification.title,
            body=notification.body,
            image=notification.image_url,
        )

    def send_to_device(self, token, notification, data=None):
        from firebase_admin import messaging

        android, apns = self._platform_options(messaging)
        message = messaging.Message(
            token=token,
            notification=self._notification(messaging, notification),
            data=_stringify_data(data),
            android=android,
            apns=apns,
        )
        message_id = messaging.send(message, app=self._get_app())
        logger.info("Push notification sent", extra={"push_message_id": message_id})
        return message_id

    def send_to_many(self, tokens, notification, data=None):
        from firebase_admin import messaging

        if not tokens:
            return DeliveryCounts(success_count=0, failure_count=0)
        android, apns = self._platform_options(messaging)
        message = messaging.MulticastMessage(
            tokens=list(tokens),
            notification=self._notification(messaging, notification),
            data=_stringify_data(data),
            android=android,
            apns=apns,
        )
        response = messaging.send_each_for_multicast(message, app=self._get_app())
        logger.info(
            "Multicast push sent",
            extra={"push_success_count": response.success_count, "push_failure_count": response.failure_count},
        )
        return DeliveryCounts(success_count=response.success_count, failure_count=response.failure_count)

    def send_to_topic(self, topic, notification, data=None):
        from firebase_admin import messaging

        message = messaging.Message(
            topic=topic,
            notification=self._notification(messaging, notification),
            data=_stringify_data(data),
        )
        return messaging.send(message, app=self._get_app())

    def subscribe_to_topic(self, tokens, topic):
        from firebase_admin import messaging

        response = messaging.subscribe_to_topic(list(tokens), topic, app=self._get_app())
        return DeliveryCounts(success_count=response.success_count, failure_count=response.failure_count)

    def unsubscribe_from_topic(self, tokens, topic):
        from firebase_admin import messaging

        response = messaging.unsubscribe_from_topic(list(tokens), topic, app=self._get_app())
        return DeliveryCounts(success_count=response.success_count, failure_count=response.failure_count)

    def describe(self) -> Dict[str, str]:
        return {"push_provider": self.name, "firebase_project_id": self.project_id or ""}


def create_push_provider(config: PushConfig) -> PushProvider:
    provider = (config.provider_name or "firebase").strip().lower()
    if provider == "firebase" and config.has_firebase_credentials:
        return FirebasePushProvider(
            project_id=config.firebase_project_id,
            client_email=config.firebase_client_email,
            private_key=config.firebase_private_key,
            credentials_path=config.firebase_credentials_path,
        )
    if provider == "firebase":
        logger.warning("Firebase credentials not configured; push notifications are disabled")
    return DisabledPushProvider()


__all__ = [
    "DeliveryCounts",
    "DisabledPushProvider",
    "FirebasePushProvider",
    "PushNotification",
    "PushProvider",
    "create_push_provider",
]
