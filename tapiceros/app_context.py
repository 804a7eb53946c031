"""Shared application context for process-wide clients."""
from __future__ import annotations

from typing import Any, Optional

_config: Optional[Any] = None
_push_config: Optional[Any] = None
_payment_gateway: Optional[Any] = None
_push_provider: Optional[Any] = None
_identity_verifier: Optional[Any] = None


def configure(
    *,
    config: Any,
    payment_gateway: Any,
    push_provider: Any,
    identity_verifier: Any,
    push_config: Any = None,
) -> None:
    """Register the clients created at startup so routers and services can reach them."""

    global _config
    global _push_config
    global _payment_gateway
    global _push_provider
    global _identity_verifier

    _config = config
    _push_config = push_config
    _payment_gateway = payment_gateway
    _push_provider = push_provider
    _identity_verifier = identity_verifier


def reset() -> None:
    configure(config=None, payment_gateway=None, push_provider=None, identity_verifier=None)


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_config() -> Any:
    return _require(_config, "config")


def get_push_config() -> Any:
    return _require(_push_config, "push_config")


def get_payment_gateway() -> Any:
    return _require(_payment_gateway, "payment_gateway")


def get_push_provider() -> Any:
    return _require(_push_provider, "push_provider")


def get_identity_verifier() -> Any:
    return _require(_identity_verifier, "identity_verifier")
