"""Push notification configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

from ..config import _to_float, _to_int


@dataclass(frozen=True)
class PushConfig:
    """Configuration for outbound push delivery."""

    provider_name: str
    firebase_project_id: Optional[str]
    firebase_client_email: Optional[str]
    firebase_private_key: Optional[str]
    firebase_credentials_path: Optional[str]
    max_attempts: int
    backoff_seconds: float

    @property
    def has_firebase_credentials(self) -> bool:
        if self.firebase_credentials_path:
            return True
        return bool(
            self.firebase_project_id and self.firebase_client_email and self.firebase_private_key
        )


def load_push_config(env: Optional[Mapping[str, str]] = None) -> PushConfig:
    """Load :class:`PushConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    private_key = env_mapping.get("FIREBASE_PRIVATE_KEY") or None
    if private_key:
        private_key = private_key.replace("\\n", "\n")

    provider_name = (env_mapping.get("PUSH_PROVIDER") or "firebase").strip().lower() or "firebase"

    max_attempts = max(1, _to_int(env_mapping.get("PUSH_MAX_ATTEMPTS"), default=3))
    backoff_seconds = max(0.0, _to_float(env_mapping.get("PUSH_RETRY_BACKOFF"), default=1.0))

    return PushConfig(
        provider_name=provider_name,
        firebase_project_id=env_mapping.get("FIREBASE_PROJECT_ID") or None,
        firebase_client_email=env_mapping.get("FIREBASE_CLIENT_EMAIL") or None,
        firebase_private_key=private_key,
        firebase_credentials_path=env_mapping.get("GOOGLE_APPLICATION_CREDENTIALS") or None,
        max_attempts=max_attempts,
        backoff_seconds=backoff_seconds,
    )
