from flask import current_app
from sqlalchemy.exc import IntegrityError # Raised when the partial unique index rejects a second active row.
from extensions import db
from errors import ConflictError, InvalidTransitionError, NotFoundError
from models.subscription import Subscription, SubscriptionStatusEnum
from utils.helpers import utcnow

# The only transitions a persisted subscription may take. Both start from ACTIVE.
ALLOWED_TRANSITIONS = {
    SubscriptionStatusEnum.ACTIVE: {SubscriptionStatusEnum.CANCELLED, SubscriptionStatusEnum.EXPIRED},
}


class SubscriptionRepository:
    """
    Persistence for subscriptions.

    Methods work inside the caller's unit of work (db.session) and never commit.
    The one exception to "never end the transaction" is `create`: when the insert is
    rejected by the one-active-per-user index the session is rolled back before
    ConflictError is raised, because the database has already aborted the transaction.
    """

    def get(self, subscription_id):
        return db.session.get(Subscription, subscription_id)

    def find_active(self, user_id):
        return Subscription.query.filter_by(user_id=user_id, status=SubscriptionStatusEnum.ACTIVE).first()

    def create(self, subscription):
        """
        Inserts an ACTIVE subscription.

        The "no other active subscription for this user" check is the partial unique
        index uq_subscriptions_one_active_per_user, so two concurrent inserts for the
        same user cannot both succeed no matter how their reads interleaved.

        Raises:
            ConflictError: The user already has an active subscription.
        """
        db.session.add(subscription)
        try:
            db.session.flush() # Sends the INSERT; the index is checked here.
        except IntegrityError as e:
            db.session.rollback()
            # Only translate the violation we expect. Anything else (bad foreign key, check constraint) propagates.
            if self.find_active(subscription.user_id) is not None:
                current_app.logger.warning(f"Rejected second active subscription for user {subscription.user_id}: {e.orig}")
                raise ConflictError() from e
            raise
        return subscription

    def update_status(self, subscription_id, new_status):
        """
        Moves a subscription from ACTIVE to `new_status` with a compare-and-swap UPDATE.

        The WHERE clause pins the current status, so when two actors race (cancel vs.
        expiry sweep, or two cancels) exactly one UPDATE matches the row.

        Raises:
            InvalidTransitionError: `new_status` is not reachable, or the row is no longer ACTIVE.
            NotFoundError: No subscription with this id.
        """
        if new_status not in ALLOWED_TRANSITIONS[SubscriptionStatusEnum.ACTIVE]:
            raise InvalidTransitionError(f"Cannot move a subscription to '{new_status.value}'.")

        result = db.session.execute(
            db.update(Subscription)
            .where(Subscription.id == subscription_id,
                   Subscription.status == SubscriptionStatusEnum.ACTIVE)
            .values(status=new_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            subscription = db.session.get(Subscription, subscription_id, populate_existing=True)
            if subscription is None:
                raise NotFoundError(f"Subscription {subscription_id} not found.")
            raise InvalidTransitionError(
                f"Subscription {subscription_id} is {subscription.status.value}; cannot move it to {new_status.value}."
            )
        return db.session.get(Subscription, subscription_id, populate_existing=True)

    def hard_delete(self, subscription_id):
        """
        Removes the row whatever its status. Administrative data correction only; normal
        cancellation goes through update_status.

        Returns:
            dict: Identifying details of the deleted row, for the response and the audit log.

        Raises:
            NotFoundError: No subscription with this id.
        """
        subscription = self.get(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found.")
        deleted = {
            'id': subscription.id,
            'userId': subscription.user_id,
            'userName': subscription.user.name if subscription.user else None,
            'planId': subscription.plan_id,
            'status': subscription.status.value,
        }
        result = db.session.execute(
            db.delete(Subscription)
            .where(Subscription.id == subscription_id)
            .execution_options(synchronize_session=False)
        )
        db.session.expunge(subscription)
        if result.rowcount == 0: # Deleted by someone else between the read and the DELETE.
            raise NotFoundError(f"Subscription {subscription_id} not found.")
        return deleted

    def list_by_user(self, user_id):
        """All of a user's subscriptions, newest first."""
        return (Subscription.query.filter_by(user_id=user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .all())

    def list_all(self, status=None, plan_id=None, page=1, per_page=20):
        """
        Paginated listing across all users for the admin console.

        Returns:
            flask_sqlalchemy.pagination.Pagination
        """
        query = db.select(Subscription)
        if status is not None:
            query = query.where(Subscription.status == status)
        if plan_id is not None:
            query = query.where(Subscription.plan_id == plan_id)
        query = query.order_by(Subscription.created_at.desc(), Subscription.id.desc())
        return db.paginate(query, page=page, per_page=per_page, error_out=False)

    def find_due_for_expiry(self, now):
        """Ids of ACTIVE subscriptions whose term ended at or before `now`, oldest first."""
        return db.session.execute(
            db.select(Subscription.id)
            .where(Subscription.status == SubscriptionStatusEnum.ACTIVE,
                   Subscription.end_date <= now)
            .order_by(Subscription.end_date.asc())
        ).scalars().all()
