# backlify/services — ledger, activation, callback intake, payment flows, expiry sweep.

from backlify.services.activation_service import ActivationResult, SubscriptionActivator
from backlify.services.callback_service import CallbackIntake, CallbackOutcome
from backlify.services.ledger_service import OrderLedger
from backlify.services.payments_service import PaymentsService
from backlify.services.subscriptions_service import SubscriptionsService

__all__ = [
    "ActivationResult",
    "CallbackIntake",
    "CallbackOutcome",
    "OrderLedger",
    "PaymentsService",
    "SubscriptionActivator",
    "SubscriptionsService",
]
