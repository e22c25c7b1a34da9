"""pushQL subscriptions: observers and the cancellable subscription engine."""
from pushql.subscription.engine import Subscription, SubscriptionState
from pushql.subscription.observers import CallbackObserver, CollectingObserver, Observer

__all__ = [
    "Subscription",
    "SubscriptionState",
    "CallbackObserver",
    "CollectingObserver",
    "Observer",
]
