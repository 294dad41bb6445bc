from collections import namedtuple
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from errors import AlreadyTerminalError, ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from models.subscription import Subscription, SubscriptionStatusEnum, SubscriptionSourceEnum
from models.user import User
from services.plan_catalog import PlanCatalog
from services.repository import SubscriptionRepository
from signals import notify_subscription_changed
from utils.helpers import utcnow, to_naive_utc, add_days

# Outcome of one expiry sweep: ids moved to EXPIRED, ids skipped because another actor
# ended them first, and ids whose update failed.
ExpirySweepResult = namedtuple('ExpirySweepResult', ['expired', 'skipped', 'failed'])


class EntitlementLifecycleManager:
    """
    The subscription state machine, per user:

        NONE --assign--> ACTIVE --cancel(soft)--> CANCELLED
        ACTIVE --expire_due--> EXPIRED
        ACTIVE --cancel(hard)--> NONE (row removed)
        CANCELLED/EXPIRED --assign--> ACTIVE (new row, old one untouched)

    Admin assignments and verified payments both end up in `assign`; the caller's
    identity only shows up in the `source` and `assigned_by_id` of the new row.
    """

    def __init__(self, repository=None, catalog=None, clock=utcnow):
        self.repository = repository or SubscriptionRepository()
        self.catalog = catalog or PlanCatalog()
        self.clock = clock # Callable returning naive UTC "now". Injected by tests.

    def assign(self, user_id, plan_id, notes=None, start_date=None,
               source=SubscriptionSourceEnum.ADMIN_ASSIGNED, assigned_by_id=None, commit=True):
        """
        Grants `plan_id` to `user_id`, starting at `start_date` (default: now).

        Args:
            user_id (int): Subscriber.
            plan_id (int): Must reference an active plan.
            notes (str, optional): Admin note, or the gateway payment id for purchases.
            start_date (datetime, optional): Naive UTC or timezone-aware start of the term.
            source (SubscriptionSourceEnum): ADMIN_ASSIGNED or SELF_PURCHASED.
            assigned_by_id (int, optional): Administrator performing the assignment.
            commit (bool): When False the new row is flushed but the caller owns the
                           transaction (used by payment verification to commit the
                           order transition and the subscription together).

        Returns:
            Subscription: The new ACTIVE subscription.

        Raises:
            ValidationError: Missing ids or inactive plan.
            NotFoundError: Unknown user or plan.
            ConflictError: The user already has an active subscription.
        """
        if not user_id or not plan_id:
            raise ValidationError("userId and planId are required.")

        if db.session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found.")
        plan = self.catalog.get_active(plan_id)

        # Early, friendly answer for the common case. The unique index inside
        # repository.create is what actually guarantees the invariant under races.
        if self.repository.find_active(user_id) is not None:
            raise ConflictError()

        start = to_naive_utc(start_date) or self.clock()
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan.id,
            status=SubscriptionStatusEnum.ACTIVE,
            source=source,
            start_date=start,
            end_date=add_days(start, plan.duration_days), # Fixed at creation, never recomputed.
            notes=notes or None,
            assigned_by_id=assigned_by_id,
        )
        self.repository.create(subscription)

        if commit:
            db.session.commit()
            notify_subscription_changed(self, user_id)
        current_app.logger.info(
            f"Assigned plan '{plan.name}' (ID: {plan.id}) to user {user_id} as subscription {subscription.id} "
            f"[{source.value}], {subscription.start_date.isoformat()} -> {subscription.end_date.isoformat()}."
        )
        return subscription

    def cancel(self, subscription_id, soft_delete=True, actor=None):
        """
        Ends a subscription.

        soft_delete=True moves it to CANCELLED and keeps the row; end_date is left as the
        record of the term that was sold. soft_delete=False removes the row entirely.

        Args:
            subscription_id (int): Target subscription.
            soft_delete (bool): Soft cancel (True) or hard delete (False).
            actor (User, optional): Who asked, for the audit log.

        Returns:
            Subscription (soft) or dict describing the removed row (hard).

        Raises:
            NotFoundError: No subscription with this id.
            AlreadyTerminalError: Soft cancel of a row that is not ACTIVE (including
                                  one ended concurrently by another actor).
        """
        actor_label = f"user {actor.id}" if actor is not None else "system"

        if not soft_delete:
            deleted = self.repository.hard_delete(subscription_id)
            db.session.commit()
            notify_subscription_changed(self, deleted['userId'])
            current_app.logger.warning(
                f"Subscription {subscription_id} (user {deleted['userId']}, status {deleted['status']}) hard-deleted by {actor_label}."
            )
            return deleted

        try:
            subscription = self.repository.update_status(subscription_id, SubscriptionStatusEnum.CANCELLED)
        except InvalidTransitionError as e:
            db.session.rollback()
            raise AlreadyTerminalError(e.message) from e
        db.session.commit()
        notify_subscription_changed(self, subscription.user_id)
        current_app.logger.info(f"Subscription {subscription_id} for user {subscription.user_id} cancelled by {actor_label}.")
        return subscription

    def current_status(self, user_id, now=None):
        """
        The user's active subscription and its days remaining, computed for `now`.

        Returns:
            dict or None: {'subscription': Subscription, 'daysRemaining': int}, or None
                          when the user has no active subscription.
        """
        subscription = self.repository.find_active(user_id)
        if subscription is None:
            return None
        return {'subscription': subscription, 'daysRemaining': subscription.days_remaining(now or self.clock())}

    def history(self, user_id):
        return self.repository.list_by_user(user_id)

    def expire_due(self, now=None):
        """
        Moves every ACTIVE subscription whose end_date has passed to EXPIRED.

        Each row is committed on its own so one bad row does not undo the rest. Rows
        that were cancelled or deleted after being selected are skipped; rows whose
        update fails are logged and counted, and the sweep carries on.

        Returns:
            ExpirySweepResult
        """
        now = now or self.clock()
        due_ids = self.repository.find_due_for_expiry(now)
        expired, skipped, failed = [], [], []

        for subscription_id in due_ids:
            try:
                subscription = self.repository.update_status(subscription_id, SubscriptionStatusEnum.EXPIRED)
                db.session.commit()
            except (InvalidTransitionError, NotFoundError) as e:
                db.session.rollback()
                skipped.append(subscription_id)
                current_app.logger.info(f"Expiry sweep: skipped subscription {subscription_id}: {e.message}")
                continue
            except SQLAlchemyError as e:
                db.session.rollback()
                failed.append(subscription_id)
                current_app.logger.error(f"Expiry sweep: failed to expire subscription {subscription_id}: {e}", exc_info=True)
                continue
            expired.append(subscription_id)
            notify_subscription_changed(self, subscription.user_id)

        current_app.logger.info(
            f"Expiry sweep at {now.isoformat()}: {len(expired)} expired, {len(skipped)} skipped, {len(failed)} failed."
        )
        return ExpirySweepResult(expired=expired, skipped=skipped, failed=failed)
