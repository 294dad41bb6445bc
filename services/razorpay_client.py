import razorpay # Official Razorpay SDK: orders and signature utilities.
import requests # Transport under the SDK; connection errors and timeouts surface as requests exceptions.
from flask import current_app
from razorpay.errors import BadRequestError, GatewayError, ServerError, SignatureVerificationError
from errors import GatewayUnavailableError

DEFAULT_API_BASE = 'https://api.razorpay.com'


class RazorpayClient:
    """
    Thin wrapper around razorpay.Client.

    Only order creation and signature checks are needed: the checkout itself runs in
    Razorpay's hosted widget, and payment confirmation comes back as a signed callback
    or webhook.
    """

    def __init__(self, key_id, key_secret, api_base=DEFAULT_API_BASE, timeout=10):
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout # Seconds. Passed to every SDK request (connect and read).
        self.client = razorpay.Client(auth=(key_id, key_secret), base_url=api_base.rstrip('/'))

    @classmethod
    def from_config(cls, config):
        return cls(
            key_id=config.get('RAZORPAY_KEY_ID'),
            key_secret=config.get('RAZORPAY_KEY_SECRET'),
            api_base=config.get('RAZORPAY_API_BASE', DEFAULT_API_BASE),
            timeout=config.get('PAYMENT_GATEWAY_TIMEOUT', 10),
        )

    def create_order(self, amount, currency, receipt, notes=None):
        """
        Opens an order at the gateway.

        Args:
            amount (int): Amount in minor units (paise).
            currency (str): ISO currency code, e.g. "INR".
            receipt (str): Our reference for the order (max 40 characters).
            notes (dict, optional): Key/value pairs stored with the order at Razorpay.

        Returns:
            dict: The gateway's order object; at least 'id', 'amount' and 'currency'.

        Raises:
            GatewayUnavailableError: Not configured, timed out, connection failed,
                                     error response, or an unreadable body.
        """
        if not self.key_id or not self.key_secret:
            current_app.logger.critical("Razorpay credentials are not configured. Check RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET.")
            raise GatewayUnavailableError()

        payload = {'amount': amount, 'currency': currency, 'receipt': receipt, 'notes': notes or {}}
        try:
            # Extra keyword arguments go straight to the SDK's requests session call.
            order = self.client.order.create(data=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            current_app.logger.error(f"Razorpay order creation timed out after {self.timeout}s (receipt {receipt}): {e}")
            raise GatewayUnavailableError() from e
        except (BadRequestError, ServerError, GatewayError) as e:
            current_app.logger.error(f"Razorpay rejected order creation (receipt {receipt}): {type(e).__name__}: {e}")
            raise GatewayUnavailableError() from e
        except ValueError as e: # Body was not JSON.
            current_app.logger.error(f"Razorpay returned an unreadable order response (receipt {receipt}): {e}")
            raise GatewayUnavailableError() from e
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f"Razorpay connection error (receipt {receipt}): {e}")
            raise GatewayUnavailableError() from e

        if not isinstance(order, dict) or not order.get('id'):
            current_app.logger.error(f"Razorpay order response without an id (receipt {receipt}): {order!r}")
            raise GatewayUnavailableError()
        return order

    def verify_payment_signature(self, order_id, payment_id, signature):
        """
        Checks the checkout callback signature (HMAC of "order_id|payment_id" with the key secret).

        Returns:
            bool: True only if the signature matches.
        """
        if not signature or not signature.isascii(): # The SDK compares with hmac.compare_digest.
            return False
        try:
            self.client.utility.verify_payment_signature({
                'razorpay_order_id': order_id,
                'razorpay_payment_id': payment_id,
                'razorpay_signature': signature,
            })
        except SignatureVerificationError:
            return False
        return True

    def verify_webhook_signature(self, raw_body, signature, secret):
        """
        Checks the X-Razorpay-Signature header against the raw webhook body.

        Args:
            raw_body (bytes or str): The request body exactly as received.
            signature (str or None): Header value.
            secret (str): Webhook secret configured in the Razorpay dashboard.

        Returns:
            bool: True only if the signature matches.
        """
        if not signature or not signature.isascii():
            return False
        if isinstance(raw_body, bytes):
            try:
                raw_body = raw_body.decode('utf-8')
            except UnicodeDecodeError:
                return False # Razorpay only sends UTF-8 JSON.
        try:
            self.client.utility.verify_webhook_signature(raw_body, signature, secret)
        except SignatureVerificationError:
            return False
        return True
