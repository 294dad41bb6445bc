import click # Flask's CLI is built on click.
from flask import current_app
from flask.cli import with_appcontext
from services.lifecycle import EntitlementLifecycleManager
from services.plan_catalog import PlanCatalog


@click.command('expire-subscriptions')
@with_appcontext
def expire_subscriptions_command():
    """Expire every active subscription whose end date has passed."""
    result = EntitlementLifecycleManager().expire_due()
    click.echo(f"Expired {len(result.expired)} subscription(s), skipped {len(result.skipped)}, failed {len(result.failed)}.")
    if result.failed:
        current_app.logger.error(f"Expiry sweep could not expire subscriptions: {result.failed}")
        # Non-zero exit so the scheduler reports the run.
        click.get_current_context().exit(1)


@click.command('seed-plans')
@with_appcontext
def seed_plans_command():
    """Create the default plans that do not exist yet."""
    created = PlanCatalog().seed_defaults()
    if not created:
        click.echo("All default plans already exist.")
        return
    for plan in created:
        click.echo(f"Created plan '{plan.name}' (ID: {plan.id}).")
