"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .payment import PaymentModel, WebhookDeliveryModel
from .transaction import TransactionModel, TransactionEventModel
from .subscription import SubscriptionModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "PaymentModel",
    "WebhookDeliveryModel",
    "TransactionModel",
    "TransactionEventModel",
    "SubscriptionModel",
]
