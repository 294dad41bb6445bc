import hashlib
import hmac
import json
import pytest
import requests
from models.payment_order import PaymentOrder, PaymentOrderStatusEnum
from models.subscription import Subscription, SubscriptionStatusEnum
from services.lifecycle import EntitlementLifecycleManager

def _hmac_hex(secret, message):
    if isinstance(message, str):
        message = message.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()

@pytest.fixture
def gateway(mocker):
    return mocker.patch('razorpay.resources.order.Order.create',
                        return_value={'id': 'order_TEST123', 'amount': 99900, 'currency': 'INR', 'status': 'created'})


# --- Authentication and authorization ---

def test_health(client, db):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'

def test_anonymous_calls_are_unauthorized(client, db):
    for method, url in [('post', '/api/v1/subscriptions/assign'), ('get', '/api/v1/billing/subscription'),
                        ('post', '/api/v1/billing/create-order'), ('get', '/api/v1/subscriptions')]:
        response = getattr(client, method)(url)
        assert response.status_code == 401
        assert response.get_json()['error'] == 'unauthorized'

def test_admin_endpoints_forbidden_for_owner(owner_client, owner, monthly_plan):
    response = owner_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': monthly_plan.id})
    assert response.status_code == 403
    assert owner_client.get('/api/v1/subscriptions').status_code == 403
    assert owner_client.post('/api/v1/subscriptions/expire-due').status_code == 403
    assert Subscription.query.count() == 0


# --- Admin override gateway ---

def test_assign_plan(admin_client, admin, owner, monthly_plan):
    response = admin_client.post('/api/v1/subscriptions/assign', json={
        'userId': owner.id, 'planId': monthly_plan.id, 'notes': 'Paid by bank transfer',
    })
    assert response.status_code == 201
    data = response.get_json()
    assert data['success'] is True
    subscription = data['subscription']
    assert subscription['status'] == 'active'
    assert subscription['source'] == 'admin_assigned'
    assert subscription['daysRemaining'] == 30
    assert subscription['assignedBy'] == {'id': admin.id, 'name': 'Admin One'}
    assert subscription['plan']['name'] == 'Monthly Plan'

def test_assign_plan_with_start_date(admin_client, owner, monthly_plan):
    response = admin_client.post('/api/v1/subscriptions/assign', json={
        'userId': owner.id, 'planId': monthly_plan.id, 'startDate': '2024-05-01T00:00:00.000Z',
    })
    assert response.status_code == 201
    subscription = response.get_json()['subscription']
    assert subscription['startDate'] == '2024-05-01T00:00:00Z'
    assert subscription['endDate'] == '2024-05-31T00:00:00Z'

def test_assign_plan_conflict(admin_client, owner, monthly_plan, trial_plan):
    admin_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': monthly_plan.id})
    response = admin_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': trial_plan.id})
    assert response.status_code == 409
    assert response.get_json()['error'] == 'active_subscription_exists'

@pytest.mark.parametrize('body, status', [
    ({'planId': 7}, 400),
    ({'userId': 42}, 400),
    ({'userId': 42, 'planId': 7, 'startDate': 'tomorrow'}, 400),
    ({'userId': 999, 'planId': 7}, 404),
    ({'userId': 42, 'planId': 999}, 404),
])
def test_assign_plan_errors(admin_client, owner, monthly_plan, body, status):
    response = admin_client.post('/api/v1/subscriptions/assign', json=body)
    assert response.status_code == status
    assert response.get_json()['success'] is False

def test_assign_plan_non_json_body(admin_client, owner, monthly_plan):
    response = admin_client.post('/api/v1/subscriptions/assign', data='userId=42', content_type='text/plain')
    assert response.status_code == 400

def test_soft_cancel_then_cancel_again(admin_client, owner, monthly_plan):
    created = admin_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': monthly_plan.id})
    subscription_id = created.get_json()['subscription']['id']

    response = admin_client.delete(f'/api/v1/subscriptions/{subscription_id}?softDelete=true')
    assert response.status_code == 200
    assert response.get_json()['subscription']['status'] == 'cancelled'
    assert response.get_json()['subscription']['daysRemaining'] == 0

    again = admin_client.delete(f'/api/v1/subscriptions/{subscription_id}?softDelete=true')
    assert again.status_code == 409
    assert again.get_json()['error'] == 'already_terminal'

def test_hard_delete_is_the_default(admin_client, owner, monthly_plan):
    created = admin_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': monthly_plan.id})
    subscription_id = created.get_json()['subscription']['id']

    response = admin_client.delete(f'/api/v1/subscriptions/{subscription_id}')
    assert response.status_code == 200
    assert response.get_json()['deletedSubscription']['id'] == subscription_id
    assert Subscription.query.count() == 0
    assert admin_client.delete(f'/api/v1/subscriptions/{subscription_id}').status_code == 404

def test_cancel_with_invalid_flag(admin_client, db):
    response = admin_client.delete('/api/v1/subscriptions/1?softDelete=maybe')
    assert response.status_code == 400

def test_user_subscriptions_history(admin_client, owner_client, other_owner_client, owner, monthly_plan, trial_plan):
    first = admin_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': trial_plan.id})
    admin_client.delete(f"/api/v1/subscriptions/{first.get_json()['subscription']['id']}?softDelete=true")
    admin_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': monthly_plan.id})

    response = owner_client.get(f'/api/v1/subscriptions/user/{owner.id}')
    assert response.status_code == 200
    data = response.get_json()
    assert data['user']['id'] == owner.id
    assert data['totalSubscriptions'] == 2
    assert sorted(s['status'] for s in data['subscriptions']) == ['active', 'cancelled']

    assert admin_client.get(f'/api/v1/subscriptions/user/{owner.id}').status_code == 200
    assert other_owner_client.get(f'/api/v1/subscriptions/user/{owner.id}').status_code == 403
    assert admin_client.get('/api/v1/subscriptions/user/999').status_code == 404

def test_list_subscriptions_with_filters(admin_client, owner, other_owner, monthly_plan, trial_plan):
    admin_client.post('/api/v1/subscriptions/assign', json={'userId': owner.id, 'planId': monthly_plan.id})
    admin_client.post('/api/v1/subscriptions/assign', json={'userId': other_owner.id, 'planId': trial_plan.id})

    data = admin_client.get('/api/v1/subscriptions?limit=1&page=2').get_json()
    assert data['pagination'] == {'totalItems': 2, 'totalPages': 2, 'currentPage': 2, 'limit': 1}
    assert len(data['subscriptions']) == 1

    data = admin_client.get(f'/api/v1/subscriptions?planId={trial_plan.id}&status=active').get_json()
    assert [s['userId'] for s in data['subscriptions']] == [other_owner.id]

    assert admin_client.get('/api/v1/subscriptions?status=paused').status_code == 400
    assert admin_client.get('/api/v1/subscriptions?planId=abc').status_code == 400

def test_expire_due_endpoint(admin_client, owner, trial_plan):
    admin_client.post('/api/v1/subscriptions/assign', json={
        'userId': owner.id, 'planId': trial_plan.id, 'startDate': '2020-01-01T00:00:00Z',
    })
    response = admin_client.post('/api/v1/subscriptions/expire-due')
    assert response.status_code == 200
    assert len(response.get_json()['expired']) == 1
    assert Subscription.query.first().status == SubscriptionStatusEnum.EXPIRED


# --- Self-service checkout ---

def test_plans_listing(owner_client, monthly_plan, trial_plan, inactive_plan):
    plans = owner_client.get('/api/v1/billing/plans').get_json()['plans']
    assert [plan['name'] for plan in plans] == ['Basic Plan', 'Monthly Plan']
    assert plans[1]['features'] == ['Unlimited machines']

def test_current_subscription_without_plan(owner_client, owner):
    data = owner_client.get('/api/v1/billing/subscription').get_json()
    assert data == {'success': True, 'subscription': None, 'daysRemaining': None}

def test_checkout_end_to_end(owner_client, owner, monthly_plan, gateway):
    response = owner_client.post('/api/v1/billing/create-order', json={'planId': 7, 'billingCycle': 'monthly'})
    assert response.status_code == 200
    order = response.get_json()
    assert order == {'order_id': 'order_TEST123', 'amount': 99900, 'currency': 'INR', 'key': 'rzp_test_key'}

    signature = _hmac_hex('test_key_secret', 'order_TEST123|pay_XYZ')
    payload = {'planId': 7, 'razorpay_order_id': 'order_TEST123',
               'razorpay_payment_id': 'pay_XYZ', 'razorpay_signature': signature}
    response = owner_client.post('/api/v1/billing/verify-payment', json=payload)
    assert response.status_code == 200
    assert response.get_json()['success'] is True

    status = owner_client.get('/api/v1/billing/subscription').get_json()
    assert status['subscription']['planId'] == 7
    assert status['subscription']['source'] == 'self_purchased'
    assert status['daysRemaining'] == 30

    # Replayed callback: still success, still one subscription.
    replay = owner_client.post('/api/v1/billing/verify-payment', json=payload)
    assert replay.status_code == 200
    assert replay.get_json()['message'] == 'Payment already verified.'
    assert Subscription.query.filter_by(user_id=42).count() == 1

def test_verify_payment_tampered_signature(owner_client, owner, monthly_plan, gateway):
    owner_client.post('/api/v1/billing/create-order', json={'planId': 7, 'billingCycle': 'monthly'})
    response = owner_client.post('/api/v1/billing/verify-payment', json={
        'planId': 7, 'razorpay_order_id': 'order_TEST123',
        'razorpay_payment_id': 'pay_XYZ', 'razorpay_signature': 'tampered',
    })
    assert response.status_code == 400
    assert response.get_json() == {'success': False, 'error': 'signature_mismatch',
                                    'message': 'Payment verification failed.'}
    assert Subscription.query.count() == 0

def test_create_order_zero_price_plan(owner_client, owner, trial_plan, gateway):
    response = owner_client.post('/api/v1/billing/create-order', json={'planId': trial_plan.id, 'billingCycle': 'monthly'})
    assert response.status_code == 400
    gateway.assert_not_called()

def test_create_order_gateway_timeout(owner_client, owner, monthly_plan, mocker):
    mocker.patch('razorpay.resources.order.Order.create', side_effect=requests.exceptions.Timeout())
    response = owner_client.post('/api/v1/billing/create-order', json={'planId': 7, 'billingCycle': 'monthly'})
    assert response.status_code == 503
    assert response.get_json()['error'] == 'gateway_unavailable'
    assert PaymentOrder.query.count() == 0

def test_create_order_with_active_subscription(owner_client, owner, monthly_plan, gateway):
    EntitlementLifecycleManager().assign(owner.id, monthly_plan.id)
    response = owner_client.post('/api/v1/billing/create-order', json={'planId': 7, 'billingCycle': 'monthly'})
    assert response.status_code == 409

def test_razorpay_webhook(client, owner_client, owner, monthly_plan, gateway):
    owner_client.post('/api/v1/billing/create-order', json={'planId': 7, 'billingCycle': 'monthly'})
    body = json.dumps({
        'event': 'payment.captured',
        'payload': {'payment': {'entity': {'id': 'pay_HOOK1', 'order_id': 'order_TEST123'}}},
    }).encode('utf-8')
    headers = {'X-Razorpay-Signature': _hmac_hex('test_webhook_secret', body)}

    response = client.post('/api/v1/billing/razorpay-webhook', data=body, headers=headers, content_type='application/json')
    assert response.status_code == 200
    assert response.get_json()['outcome'] == 'activated'

    redelivery = client.post('/api/v1/billing/razorpay-webhook', data=body, headers=headers, content_type='application/json')
    assert redelivery.get_json()['outcome'] == 'already_verified'
    assert PaymentOrder.query.first().status == PaymentOrderStatusEnum.VERIFIED

    forged = client.post('/api/v1/billing/razorpay-webhook', data=body,
                         headers={'X-Razorpay-Signature': 'forged'}, content_type='application/json')
    assert forged.status_code == 400

def test_razorpay_webhook_declined_attempt_then_retry(client, owner_client, owner, monthly_plan, gateway):
    owner_client.post('/api/v1/billing/create-order', json={'planId': 7, 'billingCycle': 'monthly'})
    body = json.dumps({
        'event': 'payment.failed',
        'payload': {'payment': {'entity': {'id': 'pay_DECLINED', 'order_id': 'order_TEST123', 'status': 'failed'}}},
    }).encode('utf-8')
    response = client.post('/api/v1/billing/razorpay-webhook', data=body,
                           headers={'X-Razorpay-Signature': _hmac_hex('test_webhook_secret', body)},
                           content_type='application/json')
    assert response.status_code == 200
    assert response.get_json()['outcome'] == 'attempt_failed'
    assert PaymentOrder.query.first().status == PaymentOrderStatusEnum.CREATED

    response = owner_client.post('/api/v1/billing/verify-payment', json={
        'planId': 7, 'razorpay_order_id': 'order_TEST123', 'razorpay_payment_id': 'pay_XYZ',
        'razorpay_signature': _hmac_hex('test_key_secret', 'order_TEST123|pay_XYZ'),
    })
    assert response.status_code == 200
    assert Subscription.query.filter_by(user_id=42, status=SubscriptionStatusEnum.ACTIVE).count() == 1
