import enum
from extensions import db
from flask_login import UserMixin # For Flask-Login integration (e.g., current_user).
from utils.helpers import utcnow, enum_values

class UserRoleEnum(enum.Enum):
    """
    Roles known to the platform. Only administrators may assign or cancel plans for other users.
    """
    ADMIN = 'admin'
    OWNER = 'owner'       # Fleet owner; the usual subscriber.
    OPERATOR = 'operator' # Machine operator working for an owner.


class User(db.Model, UserMixin):
    """
    Represents a platform user as far as the subscription core needs to know.

    Identity management (OTP login, token issuance, profile editing) lives in
    another service; this model only carries what the entitlement flows read:
    who the user is, their role, and their subscriptions. UserMixin provides the
    methods Flask-Login expects (is_authenticated, get_id, ...).
    """
    __tablename__ = 'users' # Specifies the database table name.

    # --- Basic User Information ---
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    mobile = db.Column(db.String(20), unique=True, nullable=True, index=True)
    role = db.Column(db.Enum(UserRoleEnum, name='user_role', values_callable=enum_values),
                     nullable=False, default=UserRoleEnum.OWNER, index=True)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=utcnow)

    # --- Relationships ---
    # 'subscriptions' is a query (lazy='dynamic') so callers can filter and order it.
    subscriptions = db.relationship('Subscription', backref='user', lazy='dynamic',
                                    foreign_keys='Subscription.user_id')

    @property
    def is_admin(self):
        return self.role == UserRoleEnum.ADMIN

    def has_active_subscription(self, plan_names=None):
        """
        Checks if the user currently has an active subscription.
        Optionally, it can check if the active subscription's plan name
        is one of the specified plan_names.

        Args:
            plan_names (list of str, optional): Plan names to check against.
                                                If None, any active plan matches.
        Returns:
            bool: True if the user has a matching active subscription.
        """
        # Local imports to avoid circular imports at module load time.
        from .subscription import Subscription, SubscriptionStatusEnum
        from .plan import Plan

        query = Subscription.query.filter_by(user_id=self.id, status=SubscriptionStatusEnum.ACTIVE)

        if plan_names:
            query = query.join(Plan, Subscription.plan_id == Plan.id).filter(Plan.name.in_(plan_names))

        return query.first() is not None

    def to_summary_dict(self):
        return {'id': self.id, 'name': self.name, 'mobile': self.mobile, 'role': self.role.value}

    def __repr__(self):
        return f'<User {self.id} {self.name} ({self.role.value})>'
