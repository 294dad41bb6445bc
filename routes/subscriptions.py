from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from extensions import db
from errors import NotFoundError, ValidationError
from forms import AssignPlanForm, json_formdata, validate_or_raise
from models.subscription import SubscriptionSourceEnum, SubscriptionStatusEnum
from models.user import User
from services.lifecycle import EntitlementLifecycleManager
from services.repository import SubscriptionRepository
from utils.decorators import admin_required
from utils.helpers import parse_bool_arg, parse_positive_int_arg

# Blueprint for the admin override gateway.
# Administrators assign and cancel plans directly here, bypassing checkout. Every
# operation is delegated to the EntitlementLifecycleManager; this layer only
# authorizes, parses input and shapes responses.
subscriptions_bp = Blueprint('subscriptions', __name__, url_prefix='/api/v1/subscriptions')

MAX_PAGE_SIZE = 100


@subscriptions_bp.route('/assign', methods=['POST'])
@login_required
@admin_required
def assign_plan():
    """
    Assigns a plan to a user on behalf of the calling administrator.
    Body: {userId, planId, notes?, startDate?}. Fails with 409 if the user already has
    an active subscription; the administrator must cancel it first.
    """
    form = validate_or_raise(AssignPlanForm(formdata=json_formdata(request.get_json(silent=True))))

    subscription = EntitlementLifecycleManager().assign(
        form.userId.data,
        form.planId.data,
        notes=form.notes.data,
        start_date=form.start_date_value,
        source=SubscriptionSourceEnum.ADMIN_ASSIGNED,
        assigned_by_id=current_user.id, # Audit: who granted it.
    )
    return jsonify({
        'success': True,
        'message': 'Plan assigned successfully.',
        'subscription': subscription.to_dict(),
    }), 201


@subscriptions_bp.route('/<int:subscription_id>', methods=['DELETE'])
@login_required
@admin_required
def cancel_subscription(subscription_id):
    """
    Cancels a subscription. `?softDelete=true` keeps the row as CANCELLED history;
    anything else (the default) removes the row for data correction.
    """
    try:
        soft_delete = parse_bool_arg(request.args.get('softDelete'), default=False)
    except ValueError as e:
        raise ValidationError(f"softDelete: {e}") from e

    result = EntitlementLifecycleManager().cancel(subscription_id, soft_delete=soft_delete, actor=current_user)

    if soft_delete:
        return jsonify({'success': True, 'message': 'Subscription cancelled.', 'subscription': result.to_dict()})
    return jsonify({'success': True, 'message': 'Subscription deleted.', 'deletedSubscription': result})


@subscriptions_bp.route('/user/<int:user_id>', methods=['GET'])
@login_required
def get_user_subscriptions(user_id):
    """
    Lists a user's subscriptions, newest first. Administrators may read anyone's;
    other users only their own. Clients split the list into current and history by status.
    """
    if not current_user.is_admin and current_user.id != user_id:
        return jsonify({'success': False, 'error': 'forbidden',
                        'message': 'You can only view your own subscriptions.'}), 403

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")

    subscriptions = EntitlementLifecycleManager().history(user_id)
    return jsonify({
        'success': True,
        'user': user.to_summary_dict(),
        'subscriptions': [subscription.to_dict() for subscription in subscriptions],
        'totalSubscriptions': len(subscriptions),
    })


@subscriptions_bp.route('', methods=['GET'])
@login_required
@admin_required
def list_subscriptions():
    """
    Paginated listing across all users. Optional filters: ?status=active|expired|cancelled, ?planId=.
    Paging: ?page= (1-based) and ?limit=.
    """
    status = None
    status_arg = request.args.get('status')
    if status_arg:
        try:
            status = SubscriptionStatusEnum(status_arg)
        except ValueError as e:
            raise ValidationError(f"status must be one of: {', '.join(s.value for s in SubscriptionStatusEnum)}.") from e

    plan_id = None
    plan_arg = request.args.get('planId')
    if plan_arg:
        try:
            plan_id = int(plan_arg)
        except ValueError as e:
            raise ValidationError("planId must be an integer.") from e

    page = parse_positive_int_arg(request.args.get('page'), default=1)
    per_page = parse_positive_int_arg(request.args.get('limit'),
                                      default=current_app.config.get('SUBSCRIPTIONS_PER_PAGE', 20),
                                      maximum=MAX_PAGE_SIZE)

    pagination = SubscriptionRepository().list_all(status=status, plan_id=plan_id, page=page, per_page=per_page)
    return jsonify({
        'success': True,
        'subscriptions': [subscription.to_dict() for subscription in pagination.items],
        'pagination': {
            'totalItems': pagination.total,
            'totalPages': pagination.pages,
            'currentPage': pagination.page,
            'limit': pagination.per_page,
        },
    })


@subscriptions_bp.route('/expire-due', methods=['POST'])
@login_required
@admin_required
def expire_due_subscriptions():
    """
    Runs the expiry sweep on demand. The scheduled run uses `flask expire-subscriptions`.
    """
    result = EntitlementLifecycleManager().expire_due()
    current_app.logger.info(f"Expiry sweep triggered by admin {current_user.id}.")
    return jsonify({'success': True, 'expired': result.expired, 'skipped': result.skipped, 'failed': result.failed})
