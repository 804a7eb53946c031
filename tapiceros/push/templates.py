"""Canned push notification texts, one per notification type."""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Union

from .providers import PushNotification


class NotificationType(str, Enum):
    ORDER_UPDATE = "ORDER_UPDATE"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    NEW_MESSAGE = "NEW_MESSAGE"
    SYSTEM = "SYSTEM"
    PROMOTIONAL = "PROMOTIONAL"


def order_update(order_title: str, status: str) -> PushNotification:
    return PushNotification(
        title="Actualización de Orden",
        body=f'Tu orden "{order_title}" ha sido actualizada a: {status}',
    )


def payment_received(amount: Union[Decimal, float, int]) -> PushNotification:
    return PushNotification(
        title="Pago Recibido",
        body=f"Se ha recibido un pago de ${Decimal(str(amount)):.2f}",
    )


def new_message(sender_name: str) -> PushNotification:
    return PushNotification(
        title="Nuevo Mensaje",
        body=f"Tienes un nuevo mensaje de {sender_name}",
    )


def system(title: str, message: str) -> PushNotification:
    return PushNotification(title=title, body=message)


def promotional(title: str, message: str) -> PushNotification:
    return PushNotification(title=title, body=message)
