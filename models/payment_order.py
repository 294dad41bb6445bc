import enum
from extensions import db
from utils.helpers import utcnow, isoformat, enum_values

class PaymentOrderStatusEnum(enum.Enum):
    """
    Lifecycle of a gateway order. CREATED moves to VERIFIED or FAILED exactly once.
    """
    CREATED = 'created'    # Order opened at the gateway, checkout not yet confirmed.
    VERIFIED = 'verified'  # Payment signature checked; the subscription has been granted.
    FAILED = 'failed'      # Signature mismatch or gateway-reported failure. Terminal.


class PaymentOrder(db.Model):
    """
    A Razorpay order opened for a self-service plan purchase.

    The gateway-issued order id is the primary key, so a replayed verification
    or webhook always lands on the same row.
    """
    __tablename__ = 'payment_orders'

    order_id = db.Column(db.String(64), primary_key=True) # e.g. "order_IluGWxBm9U8zJ8"

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id'), nullable=False, index=True)
    billing_cycle = db.Column(db.String(20), nullable=False)

    # --- Amount ---
    amount = db.Column(db.Integer, nullable=False)   # Minor units (paise for INR).
    currency = db.Column(db.String(3), nullable=False)

    status = db.Column(db.Enum(PaymentOrderStatusEnum, name='payment_order_status', values_callable=enum_values),
                       nullable=False, default=PaymentOrderStatusEnum.CREATED, index=True)

    # --- Verification Details ---
    payment_id = db.Column(db.String(64), nullable=True, index=True)
    gateway_signature = db.Column(db.String(128), nullable=True)
    # Subscription created by this order. Set together with the VERIFIED transition.
    subscription_id = db.Column(db.Integer, db.ForeignKey('subscriptions.id', ondelete='SET NULL'), nullable=True)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    plan = db.relationship('Plan')
    user = db.relationship('User')

    # One outstanding (CREATED) order per user and plan. A concurrent duplicate insert
    # fails here and the broker returns the order that won.
    __table_args__ = (
        db.Index('uq_payment_orders_one_open_per_user_plan', 'user_id', 'plan_id', unique=True,
                 postgresql_where=db.text("status = 'created'"),
                 sqlite_where=db.text("status = 'created'")),
        db.CheckConstraint('amount > 0', name='ck_payment_orders_amount_positive'),
    )

    def to_dict(self):
        return {
            'orderId': self.order_id,
            'userId': self.user_id,
            'planId': self.plan_id,
            'billingCycle': self.billing_cycle,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status.value,
            'paymentId': self.payment_id,
            'subscriptionId': self.subscription_id,
            'createdAt': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<PaymentOrder {self.order_id} user={self.user_id} plan={self.plan_id} status={self.status.value}>'
