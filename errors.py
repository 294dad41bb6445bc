"""
Error taxonomy for the subscription service.

Every error raised by the services carries a stable ``kind`` string and the HTTP
status it maps to. The application-level error handler in app.py renders them as
``{"success": false, "error": kind, "message": message}``.
"""


class SubscriptionServiceError(Exception):
    """Base class for all errors surfaced to API callers."""
    kind = 'service_error'
    status_code = 500

    def __init__(self, message=None, details=None):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()
        self.details = details # Optional structured payload (e.g., per-field form errors).

    def default_message(self):
        return 'The request could not be completed.'

    def to_dict(self):
        payload = {'success': False, 'error': self.kind, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(SubscriptionServiceError):
    """Missing or malformed input. Raised before any persistence access."""
    kind = 'validation_error'
    status_code = 400

    def default_message(self):
        return 'Invalid request data.'


class ConflictError(SubscriptionServiceError):
    """An active subscription already exists for the user. Cancel it first."""
    kind = 'active_subscription_exists'
    status_code = 409

    def default_message(self):
        return 'User already has an active subscription. Cancel it before assigning a new plan.'


class NotFoundError(SubscriptionServiceError):
    kind = 'not_found'
    status_code = 404

    def default_message(self):
        return 'Resource not found.'


class AlreadyTerminalError(SubscriptionServiceError):
    """Cancel attempted on a subscription that is already cancelled or expired."""
    kind = 'already_terminal'
    status_code = 409

    def default_message(self):
        return 'Subscription is no longer active.'


class InvalidTransitionError(SubscriptionServiceError):
    """Repository-level status transition outside active -> cancelled/expired."""
    kind = 'invalid_transition'
    status_code = 409

    def default_message(self):
        return 'Status transition is not allowed.'


class SignatureMismatchError(SubscriptionServiceError):
    """Payment verification failed. The message never includes signature details."""
    kind = 'signature_mismatch'
    status_code = 400

    def default_message(self):
        return 'Payment verification failed.'


class GatewayUnavailableError(SubscriptionServiceError):
    """The payment gateway timed out or returned an error. Safe to retry."""
    kind = 'gateway_unavailable'
    status_code = 503

    def default_message(self):
        return 'Payment gateway is unavailable. Please try again.'
