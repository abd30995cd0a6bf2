"""Channel dispatchers for push, email, SMS, WhatsApp and in-app delivery."""

from .base import (
    ChannelDispatcher,
    DeliveryResult,
    DeliveryTarget,
    Device,
    MessageContent,
    ProviderError,
)
from .dispatcher import ChannelRouter
from .email import EmailDispatcher
from .errors import classify_error
from .in_app import InAppDispatcher
from .push import PushDispatcher
from .sms import SmsDispatcher
from .whatsapp import DailyBudget, WhatsAppDispatcher, normalize_phone

__all__ = [
    "ChannelDispatcher",
    "ChannelRouter",
    "DailyBudget",
    "DeliveryResult",
    "DeliveryTarget",
    "Device",
    "EmailDispatcher",
    "InAppDispatcher",
    "MessageContent",
    "ProviderError",
    "PushDispatcher",
    "SmsDispatcher",
    "WhatsAppDispatcher",
    "classify_error",
    "normalize_phone",
]
