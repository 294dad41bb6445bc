import json
from collections import namedtuple
from flask import current_app
from sqlalchemy.exc import IntegrityError
from extensions import db
from errors import (ConflictError, GatewayUnavailableError, NotFoundError, SignatureMismatchError,
                    SubscriptionServiceError, ValidationError)
from models.payment_order import PaymentOrder, PaymentOrderStatusEnum
from models.subscription import SubscriptionSourceEnum
from services.lifecycle import EntitlementLifecycleManager
from services.plan_catalog import PlanCatalog
from services.razorpay_client import RazorpayClient
from services.repository import SubscriptionRepository
from signals import notify_subscription_changed
from utils.helpers import utcnow

# Billing cycles the checkout clients send. Informational: the amount always comes from the plan.
BILLING_CYCLES = ('monthly', 'quarterly', 'semi_annual', 'annual', 'yearly')

# Webhook events that confirm money was taken for an order.
PAYMENT_SUCCESS_EVENTS = ('payment.captured', 'order.paid')
PAYMENT_FAILURE_EVENTS = ('payment.failed',)

# Outcome of a verification. `already_verified` is True for replays of a verified order.
VerificationResult = namedtuple('VerificationResult', ['order', 'subscription_id', 'already_verified'])
# Outcome of a webhook delivery: 'activated', 'already_verified', 'attempt_failed' or 'ignored'.
WebhookResult = namedtuple('WebhookResult', ['event', 'order_id', 'outcome'])


def _find_open_order(user_id, plan_id):
    return PaymentOrder.query.filter_by(user_id=user_id, plan_id=plan_id,
                                        status=PaymentOrderStatusEnum.CREATED).first()


class PaymentOrderBroker:
    """
    Opens gateway orders for plan purchases and keeps at most one outstanding
    (CREATED) order per user and plan.
    """

    def __init__(self, gateway=None, catalog=None, repository=None):
        self._gateway = gateway
        self.catalog = catalog or PlanCatalog()
        self.repository = repository or SubscriptionRepository()

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = RazorpayClient.from_config(current_app.config)
        return self._gateway

    def create_order(self, user_id, plan_id, billing_cycle):
        """
        Creates (or returns the outstanding) payment order for `user_id` buying `plan_id`.

        Args:
            user_id (int): Buyer.
            plan_id (int): Must reference an active plan with a price above zero.
            billing_cycle (str): One of BILLING_CYCLES.

        Returns:
            PaymentOrder: The persisted order in CREATED state.

        Raises:
            ValidationError: Bad billing cycle, inactive plan, or a plan that is not payable.
            NotFoundError: Unknown plan.
            ConflictError: The user already has an active subscription.
            GatewayUnavailableError: The gateway could not create the order. Nothing was stored.
        """
        if billing_cycle not in BILLING_CYCLES:
            raise ValidationError(f"billingCycle must be one of: {', '.join(BILLING_CYCLES)}.")

        plan = self.catalog.get_active(plan_id)
        if not plan.is_payable:
            # Trial / contact-sales plans are granted by an administrator, never sold through checkout.
            raise ValidationError(f"Plan '{plan.name}' cannot be purchased online. Please contact support.")

        # A payment that could not be honoured would have to be refunded by hand.
        if self.repository.find_active(user_id) is not None:
            raise ConflictError()

        existing = _find_open_order(user_id, plan.id)
        if existing is not None:
            # The first request's billing cycle stays on the order; the amount comes from the plan either way.
            if existing.billing_cycle != billing_cycle:
                current_app.logger.warning(
                    f"Outstanding payment order {existing.order_id} keeps billing cycle '{existing.billing_cycle}'; "
                    f"request for user {user_id} asked for '{billing_cycle}'."
                )
            current_app.logger.info(f"Returning outstanding payment order {existing.order_id} for user {user_id}, plan {plan.id}.")
            return existing

        currency = current_app.config.get('PAYMENT_CURRENCY', 'INR')
        gateway_order = self.gateway.create_order(
            amount=plan.amount_minor_units,
            currency=currency,
            receipt=f"rcpt_{user_id}_{plan.id}_{int(utcnow().timestamp())}",
            notes={'userId': str(user_id), 'planId': str(plan.id), 'billingCycle': billing_cycle},
        )

        order = PaymentOrder(
            order_id=gateway_order['id'],
            user_id=user_id,
            plan_id=plan.id,
            billing_cycle=billing_cycle,
            amount=int(gateway_order.get('amount') or plan.amount_minor_units),
            currency=gateway_order.get('currency') or currency,
            status=PaymentOrderStatusEnum.CREATED,
        )
        db.session.add(order)
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent request for the same user and plan committed first.
            db.session.rollback()
            winner = _find_open_order(user_id, plan.id)
            if winner is None:
                raise
            current_app.logger.info(
                f"Discarding duplicate gateway order {gateway_order['id']}; user {user_id} already has {winner.order_id} for plan {plan.id}."
            )
            return winner

        current_app.logger.info(
            f"Created payment order {order.order_id} for user {user_id}, plan '{plan.name}' ({order.amount} {order.currency}, {billing_cycle})."
        )
        return order


class SignatureVerifier:
    """
    Turns a claimed successful payment into entitlement, once.

    The signature is checked before anything else happens. The CREATED -> VERIFIED
    transition is a compare-and-swap committed in the same transaction as the new
    subscription, so retried or concurrent callbacks for one order grant at most one
    subscription, and a failed assignment leaves the order CREATED.
    """

    def __init__(self, lifecycle=None, gateway=None):
        self.lifecycle = lifecycle or EntitlementLifecycleManager()
        self._gateway = gateway

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = RazorpayClient.from_config(current_app.config)
        return self._gateway

    def _secret(self, key):
        secret = current_app.config.get(key)
        if not secret:
            current_app.logger.critical(f"{key} is not configured; payment verification is impossible.")
            raise GatewayUnavailableError("Payment verification is not available.")
        return secret

    def verify(self, user_id, order_id, payment_id, signature, plan_id=None):
        """
        Verifies a checkout callback and grants the plan.

        Args:
            user_id (int): The caller; must own the order.
            order_id (str): razorpay_order_id.
            payment_id (str): razorpay_payment_id.
            signature (str): razorpay_signature, hex HMAC-SHA256 of "order_id|payment_id".
            plan_id (int, optional): Plan the client believes it paid for; must match the order.

        Returns:
            VerificationResult

        Raises:
            NotFoundError: Unknown order, or an order that belongs to someone else.
            ValidationError: plan_id does not match the order.
            SignatureMismatchError: Bad signature (the order is marked FAILED), or the order had already failed.
            ConflictError: The user gained an active subscription in the meantime; the order stays CREATED.
        """
        if not order_id or not payment_id or not signature:
            raise ValidationError("razorpay_order_id, razorpay_payment_id and razorpay_signature are required.")

        order = db.session.get(PaymentOrder, order_id)
        if order is None or order.user_id != user_id:
            raise NotFoundError(f"Payment order {order_id} not found.")
        if plan_id is not None and order.plan_id != plan_id:
            raise ValidationError("planId does not match the payment order.")

        self._secret('RAZORPAY_KEY_SECRET') # The SDK signs with the key secret it was built with.
        if not self.gateway.verify_payment_signature(order_id, payment_id, signature):
            marked = self._mark_failed(order_id, payment_id, signature)
            current_app.logger.warning(
                f"Signature mismatch for payment order {order_id} (user {user_id}, payment {payment_id})."
                f"{' Order marked failed.' if marked else ''}"
            )
            raise SignatureMismatchError()

        return self._activate(order, payment_id, signature)

    def handle_webhook(self, raw_body, header_signature):
        """
        Processes a Razorpay webhook delivery. Safe under redelivery.

        Args:
            raw_body (bytes): The request body exactly as received.
            header_signature (str): X-Razorpay-Signature header.

        Returns:
            WebhookResult

        Raises:
            SignatureMismatchError: The body was not signed with the webhook secret.
            ValidationError: The body is not a JSON event.
            ConflictError: The buyer already has an active subscription; Razorpay will redeliver.
        """
        secret = self._secret('RAZORPAY_WEBHOOK_SECRET')
        if not self.gateway.verify_webhook_signature(raw_body, header_signature, secret):
            current_app.logger.warning("Rejected Razorpay webhook with an invalid signature.")
            raise SignatureMismatchError()

        try:
            event = json.loads(raw_body)
            event_type = event.get('event')
        except (ValueError, AttributeError) as e:
            raise ValidationError("Webhook body is not a JSON event.") from e

        if event_type not in PAYMENT_SUCCESS_EVENTS + PAYMENT_FAILURE_EVENTS:
            current_app.logger.info(f"Ignoring Razorpay webhook event '{event_type}'.")
            return WebhookResult(event=event_type, order_id=None, outcome='ignored')

        payment = (((event.get('payload') or {}).get('payment') or {}).get('entity') or {})
        order_id = payment.get('order_id')
        payment_id = payment.get('id')
        order = db.session.get(PaymentOrder, order_id) if order_id else None
        if order is None:
            current_app.logger.warning(f"Razorpay webhook '{event_type}' for unknown order {order_id} (payment {payment_id}).")
            return WebhookResult(event=event_type, order_id=order_id, outcome='ignored')

        if event_type in PAYMENT_FAILURE_EVENTS:
            # A declined attempt. The buyer can retry on the same order, so it stays open.
            recorded = self._record_failed_attempt(order_id, payment_id)
            current_app.logger.info(
                f"Razorpay reported payment attempt {payment_id} failed for order {order_id}; order left open for a retry."
            )
            return WebhookResult(event=event_type, order_id=order_id, outcome='attempt_failed' if recorded else 'ignored')

        if order.status == PaymentOrderStatusEnum.FAILED:
            # Money was captured for an order we already refused on a bad signature. Needs a human.
            current_app.logger.error(
                f"Razorpay captured payment {payment_id} for FAILED order {order_id} (user {order.user_id}). Manual reconciliation required."
            )
            return WebhookResult(event=event_type, order_id=order_id, outcome='ignored')

        result = self._activate(order, payment_id, None)
        return WebhookResult(event=event_type, order_id=order_id,
                             outcome='already_verified' if result.already_verified else 'activated')

    def _mark_failed(self, order_id, payment_id, signature):
        """CREATED -> FAILED compare-and-swap after a signature mismatch. Returns True if this call made the transition."""
        result = db.session.execute(
            db.update(PaymentOrder)
            .where(PaymentOrder.order_id == order_id,
                   PaymentOrder.status == PaymentOrderStatusEnum.CREATED)
            .values(status=PaymentOrderStatusEnum.FAILED, payment_id=payment_id,
                    gateway_signature=signature, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def _record_failed_attempt(self, order_id, payment_id):
        """
        Notes a declined payment attempt on a CREATED order without closing it.
        Returns True if the order was still open.
        """
        result = db.session.execute(
            db.update(PaymentOrder)
            .where(PaymentOrder.order_id == order_id,
                   PaymentOrder.status == PaymentOrderStatusEnum.CREATED)
            .values(payment_id=payment_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def _activate(self, order, payment_id, signature):
        order_id = order.order_id
        user_id = order.user_id
        plan_id = order.plan_id

        if order.status == PaymentOrderStatusEnum.VERIFIED:
            current_app.logger.info(f"Payment order {order_id} already verified; no new subscription.")
            return VerificationResult(order=order, subscription_id=order.subscription_id, already_verified=True)
        if order.status == PaymentOrderStatusEnum.FAILED:
            raise SignatureMismatchError()

        claimed = db.session.execute(
            db.update(PaymentOrder)
            .where(PaymentOrder.order_id == order_id,
                   PaymentOrder.status == PaymentOrderStatusEnum.CREATED)
            .values(status=PaymentOrderStatusEnum.VERIFIED, payment_id=payment_id,
                    gateway_signature=signature, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            # Another delivery for the same order got there first.
            db.session.rollback()
            current = db.session.get(PaymentOrder, order_id, populate_existing=True)
            if current is not None and current.status == PaymentOrderStatusEnum.VERIFIED:
                current_app.logger.info(f"Payment order {order_id} verified concurrently; no new subscription.")
                return VerificationResult(order=current, subscription_id=current.subscription_id, already_verified=True)
            raise SignatureMismatchError()

        try:
            subscription = self.lifecycle.assign(
                user_id, plan_id,
                notes=payment_id,
                source=SubscriptionSourceEnum.SELF_PURCHASED,
                commit=False,
            )
        except SubscriptionServiceError:
            db.session.rollback() # Order goes back to CREATED; a retry can complete it later.
            current_app.logger.error(f"Payment {payment_id} for order {order_id} verified but the plan could not be granted to user {user_id}.")
            raise

        db.session.execute(
            db.update(PaymentOrder)
            .where(PaymentOrder.order_id == order_id)
            .values(subscription_id=subscription.id)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        notify_subscription_changed(self, user_id)

        order = db.session.get(PaymentOrder, order_id, populate_existing=True)
        current_app.logger.info(f"Payment order {order_id} verified (payment {payment_id}); subscription {order.subscription_id} granted to user {user_id}.")
        return VerificationResult(order=order, subscription_id=order.subscription_id, already_verified=False)
