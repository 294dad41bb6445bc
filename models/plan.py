import enum
from decimal import Decimal
from extensions import db # Import the SQLAlchemy instance from extensions.
from utils.helpers import utcnow, isoformat, enum_values

class PlanTypeEnum(enum.Enum):
    """
    Enumeration of the plan families offered in the catalog.
    """
    TRIAL = 'trial'
    MONTHLY = 'monthly'
    QUARTERLY = 'quarterly'
    SEMI_ANNUAL = 'semi_annual'
    ANNUAL = 'annual'


class Plan(db.Model):
    """
    Represents a plan definition in the catalog.

    Plans are owned by the catalog collaborator; the subscription core only reads
    them to look up price and duration when a subscription is created or paid for.
    """
    __tablename__ = 'plans' # Specifies the database table name.

    # --- Plan Identification and Details ---
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False) # e.g. "Monthly Plan". Must be unique.
    type = db.Column(db.Enum(PlanTypeEnum, name='plan_type', values_callable=enum_values), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    # Price in major currency units (e.g., 999.00 INR). Numeric type for precise decimal values.
    # A price of 0 marks a trial / contact-sales plan that can only be assigned by an administrator.
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    # Length of the entitlement granted by one subscription to this plan.
    duration_days = db.Column(db.Integer, nullable=False)

    # --- Features ---
    # Ordered list of feature strings, e.g. ["Unlimited machines", "Priority support"].
    features = db.Column(db.JSON, nullable=False, default=list)

    # --- Catalog Presentation ---
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint('price >= 0', name='ck_plans_price_non_negative'),
        db.CheckConstraint('duration_days >= 1', name='ck_plans_duration_positive'),
    )

    @property
    def is_payable(self):
        """True when the plan can be bought through the hosted checkout (price > 0)."""
        return Decimal(self.price or 0) > 0

    @property
    def amount_minor_units(self):
        """Price converted to the gateway's minor units (paise for INR)."""
        return int((Decimal(self.price or 0) * 100).to_integral_value())

    def to_summary_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
            'price': float(self.price),
            'durationDays': self.duration_days,
        }

    def to_dict(self):
        data = self.to_summary_dict()
        data.update({
            'description': self.description,
            'features': list(self.features or []),
            'isActive': self.is_active,
            'displayOrder': self.display_order,
            'createdAt': isoformat(self.created_at),
        })
        return data

    def __repr__(self):
        return f'<Plan {self.name} - {self.price} / {self.duration_days}d>'
