from flask import current_app
from extensions import db
from errors import NotFoundError, ValidationError
from models.plan import Plan, PlanTypeEnum

# Default catalog loaded by `flask seed-plans`.
DEFAULT_PLANS = [
    {
        'name': 'Basic Plan',
        'type': PlanTypeEnum.TRIAL,
        'price': 0,
        'duration_days': 7,
        'description': 'Start small with our Basic Plan. Perfect for getting started.',
        'features': ['Up to 5 machines', 'Up to 3 operators', 'Basic support'],
        'display_order': 1,
    },
    {
        'name': 'Monthly Plan',
        'type': PlanTypeEnum.MONTHLY,
        'price': 999,
        'duration_days': 30,
        'description': 'Flexible monthly billing. Ideal for small businesses.',
        'features': ['Unlimited machines', 'Unlimited operators', 'Priority support', 'Advanced analytics'],
        'display_order': 2,
    },
    {
        'name': 'Quarterly Plan',
        'type': PlanTypeEnum.QUARTERLY,
        'price': 2499,
        'duration_days': 90,
        'description': 'Save 17% with our Quarterly Plan. Best for growing businesses.',
        'features': ['Unlimited machines', 'Unlimited operators', '24/7 Premium support', 'Advanced analytics', 'Custom reports'],
        'display_order': 3,
    },
    {
        'name': 'Semi Annual Plan',
        'type': PlanTypeEnum.SEMI_ANNUAL,
        'price': 4499,
        'duration_days': 180,
        'description': 'Save 25% with our Semi-Annual Plan. Great for established businesses.',
        'features': ['All quarterly features', 'Custom reports', 'Dedicated account manager', 'API access'],
        'display_order': 4,
    },
    {
        'name': 'Annual Plan',
        'type': PlanTypeEnum.ANNUAL,
        'price': 7999,
        'duration_days': 365,
        'description': 'Best Value! Save 33% with our Annual Plan.',
        'features': ['All features', 'Dedicated limit', 'Priority feature requests', 'Phone support'],
        'display_order': 5,
    },
]


class PlanCatalog:
    """
    Read-only view of the plan catalog.

    Plan definitions are owned and edited elsewhere; the entitlement flows only
    look plans up by id to read their price and duration.
    """

    def get(self, plan_id):
        plan = db.session.get(Plan, plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found.")
        return plan

    def get_active(self, plan_id):
        """
        Returns the plan if it exists and is open for new subscriptions.

        Raises:
            NotFoundError: No plan with this id.
            ValidationError: The plan exists but has been deactivated.
        """
        plan = self.get(plan_id)
        if not plan.is_active:
            raise ValidationError(f"Plan '{plan.name}' is not available for new subscriptions.")
        return plan

    def list_active(self):
        return (Plan.query.filter_by(is_active=True)
                .order_by(Plan.display_order.asc(), Plan.id.asc())
                .all())

    def seed_defaults(self):
        """
        Inserts the default plans that are missing (matched by name). Existing plans are left untouched.

        Returns:
            list of Plan: The plans that were created.
        """
        created = []
        for definition in DEFAULT_PLANS:
            if Plan.query.filter_by(name=definition['name']).first() is not None:
                continue
            plan = Plan(is_active=True, **definition)
            db.session.add(plan)
            created.append(plan)
        db.session.commit()
        for plan in created:
            current_app.logger.info(f"Seeded plan '{plan.name}' (ID: {plan.id}, {plan.duration_days} days, price {plan.price}).")
        return created
