import enum
from extensions import db # Import the SQLAlchemy instance.
from utils.helpers import utcnow, isoformat, whole_days_remaining, enum_values

class SubscriptionStatusEnum(enum.Enum):
    """
    Enumeration for the possible statuses of a user's subscription.

    ACTIVE is the only non-terminal state. CANCELLED and EXPIRED rows are kept
    as history and are never reactivated; re-subscribing creates a new row.
    """
    ACTIVE = 'active'        # Entitlement is in force.
    EXPIRED = 'expired'      # The term ran out and the expiry sweep closed it.
    CANCELLED = 'cancelled'  # Ended early by a soft cancel. end_date keeps the original term.

    @property
    def is_terminal(self):
        return self is not SubscriptionStatusEnum.ACTIVE


class SubscriptionSourceEnum(enum.Enum):
    """
    How the subscription was granted.
    """
    ADMIN_ASSIGNED = 'admin_assigned'  # Assigned directly by a back-office administrator.
    SELF_PURCHASED = 'self_purchased'  # Created after a verified gateway payment.


class Subscription(db.Model):
    """
    A user's entitlement to a plan for a fixed term.

    end_date is computed once at creation (start_date + plan.duration_days) and never
    rewritten, not even by a cancellation. Days remaining are derived on read.
    """
    __tablename__ = 'subscriptions' # Specifies the database table name.

    id = db.Column(db.Integer, primary_key=True)

    # --- Foreign Keys and Relationships ---
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id'), nullable=False, index=True)

    # --- Term ---
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    # --- Status and Provenance ---
    status = db.Column(db.Enum(SubscriptionStatusEnum, name='subscription_status', values_callable=enum_values),
                       nullable=False, default=SubscriptionStatusEnum.ACTIVE, index=True)
    source = db.Column(db.Enum(SubscriptionSourceEnum, name='subscription_source', values_callable=enum_values),
                       nullable=False)
    # Free text. For admin assignments: the administrator's note. For purchases: the gateway payment id.
    notes = db.Column(db.Text, nullable=True)
    # Administrator who assigned the plan (audit trail). Null for self-purchased subscriptions.
    assigned_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    plan = db.relationship('Plan')
    assigned_by = db.relationship('User', foreign_keys=[assigned_by_id])

    # --- Table Arguments ---
    # The partial unique index is what makes "at most one active subscription per user"
    # hold under concurrent inserts: the second INSERT fails with an IntegrityError.
    __table_args__ = (
        db.Index('uq_subscriptions_one_active_per_user', 'user_id', unique=True,
                 postgresql_where=db.text("status = 'active'"),
                 sqlite_where=db.text("status = 'active'")),
        db.CheckConstraint('end_date > start_date', name='ck_subscriptions_end_after_start'),
    )

    @property
    def is_active(self):
        return self.status == SubscriptionStatusEnum.ACTIVE

    def days_remaining(self, now=None):
        """
        Whole days of entitlement left at `now` (defaults to the current time).
        Only meaningful while the subscription is active; terminal rows report 0.
        """
        if not self.is_active:
            return 0
        return whole_days_remaining(self.end_date, now or utcnow())

    def to_dict(self, now=None):
        """
        JSON representation used by every endpoint that returns a subscription.
        """
        return {
            'id': self.id,
            'userId': self.user_id,
            'planId': self.plan_id,
            'plan': self.plan.to_summary_dict() if self.plan else None,
            'status': self.status.value,
            'source': self.source.value,
            'startDate': isoformat(self.start_date),
            'endDate': isoformat(self.end_date),
            'daysRemaining': self.days_remaining(now),
            'notes': self.notes,
            'assignedBy': {'id': self.assigned_by.id, 'name': self.assigned_by.name} if self.assigned_by else None,
            'createdAt': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<Subscription {self.id} user={self.user_id} plan={self.plan_id} status={self.status.value}>'
