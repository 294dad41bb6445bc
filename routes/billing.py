from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from forms import CreateOrderForm, VerifyPaymentForm, json_formdata, validate_or_raise
from services.lifecycle import EntitlementLifecycleManager
from services.payments import PaymentOrderBroker, SignatureVerifier
from services.plan_catalog import PlanCatalog

# Blueprint for self-service purchases.
# Flow: create-order opens a Razorpay order -> the client runs the hosted checkout ->
# verify-payment (or the gateway webhook) proves the payment and grants the plan.
billing_bp = Blueprint('billing', __name__, url_prefix='/api/v1/billing')


@billing_bp.route('/plans', methods=['GET'])
@login_required
def list_plans():
    """Active plans for the checkout screen, in display order."""
    plans = PlanCatalog().list_active()
    return jsonify({'success': True, 'plans': [plan.to_dict() for plan in plans]})


@billing_bp.route('/subscription', methods=['GET'])
@login_required
def current_subscription():
    """
    The caller's active subscription with days remaining, recomputed on every request.
    Both fields are null when there is no active subscription.
    """
    status = EntitlementLifecycleManager().current_status(current_user.id)
    if status is None:
        return jsonify({'success': True, 'subscription': None, 'daysRemaining': None})
    return jsonify({
        'success': True,
        'subscription': status['subscription'].to_dict(),
        'daysRemaining': status['daysRemaining'],
    })


@billing_bp.route('/create-order', methods=['POST'])
@login_required # Ensures only logged-in users can open an order.
def create_order():
    """
    Opens (or returns the outstanding) gateway order for the selected plan.
    Body: {planId, billingCycle}. Response carries what the hosted checkout needs;
    `amount` is in minor units.
    """
    form = validate_or_raise(CreateOrderForm(formdata=json_formdata(request.get_json(silent=True))))

    order = PaymentOrderBroker().create_order(current_user.id, form.planId.data, form.billingCycle.data)
    return jsonify({
        'order_id': order.order_id,
        'amount': order.amount,
        'currency': order.currency,
        'key': current_app.config.get('RAZORPAY_KEY_ID'), # Public key id for the checkout widget.
    })


@billing_bp.route('/verify-payment', methods=['POST'])
@login_required
def verify_payment():
    """
    Checkout success callback. The signature is verified before any entitlement is
    granted; replays of an already verified order succeed without side effects.
    """
    form = validate_or_raise(VerifyPaymentForm(formdata=json_formdata(request.get_json(silent=True))))

    result = SignatureVerifier().verify(
        current_user.id,
        form.razorpay_order_id.data,
        form.razorpay_payment_id.data,
        form.razorpay_signature.data,
        plan_id=form.planId.data,
    )
    message = 'Payment already verified.' if result.already_verified else 'Payment verified. Your subscription is now active.'
    return jsonify({'success': True, 'message': message})


@billing_bp.route('/razorpay-webhook', methods=['POST'])
def razorpay_webhook():
    """
    Gateway-to-server notification. Authenticated by the X-Razorpay-Signature header
    (HMAC of the raw body), not by a user session. Redeliveries are harmless.
    """
    raw_body = request.get_data() # Raw bytes; the signature covers the exact body.
    signature = request.headers.get('X-Razorpay-Signature')

    result = SignatureVerifier().handle_webhook(raw_body, signature)
    current_app.logger.info(f"Razorpay webhook '{result.event}' for order {result.order_id}: {result.outcome}.")
    return jsonify({'success': True, 'outcome': result.outcome})
