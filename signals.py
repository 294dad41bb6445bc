from blinker import Namespace # Flask's own signalling library.

_signals = Namespace()

# Sent after a subscription mutation (assign, cancel, hard delete, expiry) is committed.
# Receivers get `user_id` and `tags`: the cached views that are now stale, e.g.
# ['Subscriptions', 'UserSubscriptions:42'].
subscription_changed = _signals.signal('subscription-changed')


def invalidation_tags(user_id):
    """Cache tags affected by a change to `user_id`'s subscriptions."""
    return ['Subscriptions', f'UserSubscriptions:{user_id}']


def notify_subscription_changed(sender, user_id):
    subscription_changed.send(sender, user_id=user_id, tags=invalidation_tags(user_id))
