from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import IntegerField, StringField
from wtforms.validators import AnyOf, DataRequired, Length, Optional
from wtforms.validators import ValidationError as FieldValidationError # Field-level error raised inside validate_<field>.
from errors import ValidationError
from services.payments import BILLING_CYCLES
from utils.helpers import parse_iso_datetime


def json_formdata(payload):
    """
    Converts a decoded JSON body into form data.

    JSON nulls are dropped (the field counts as missing) and scalars are turned into
    strings, which is what WTForms fields expect to coerce.

    Raises:
        ValidationError: If the body is not a JSON object.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    formdata = MultiDict()
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        formdata.add(key, str(value))
    return formdata


def validate_or_raise(form):
    """
    Runs the form's validators and raises ValidationError with per-field messages on failure.
    """
    if not form.validate():
        first_field, messages = next(iter(form.errors.items()))
        raise ValidationError(f"{first_field}: {messages[0]}", details=form.errors)
    return form


class ApiForm(FlaskForm):
    """
    Base class for JSON request forms. The API is called with the session cookie by
    first-party clients only, so form-level CSRF tokens are not used.
    """
    class Meta:
        csrf = False


class AssignPlanForm(ApiForm):
    """
    Body of an admin plan assignment: {userId, planId, notes?, startDate?}.
    """
    userId = IntegerField('User', validators=[DataRequired(message="userId is required.")])
    planId = IntegerField('Plan', validators=[DataRequired(message="planId is required.")])
    # Free text attributable to the assigning administrator (payment reference, reason, ...).
    notes = StringField('Notes', validators=[Optional(), Length(max=1000, message="notes must be at most 1000 characters.")])
    # ISO-8601. Defaults to now when omitted.
    startDate = StringField('Start date', validators=[Optional()])

    start_date_value = None # Parsed startDate (naive UTC) after validation.

    def validate_startDate(self, field):
        try:
            self.start_date_value = parse_iso_datetime(field.data)
        except ValueError:
            raise FieldValidationError("startDate must be an ISO-8601 date or datetime.")


class CreateOrderForm(ApiForm):
    """
    Body of a checkout order request: {planId, billingCycle}.
    """
    planId = IntegerField('Plan', validators=[DataRequired(message="planId is required.")])
    billingCycle = StringField('Billing cycle', validators=[
        DataRequired(message="billingCycle is required."),
        AnyOf(BILLING_CYCLES, message=f"billingCycle must be one of: {', '.join(BILLING_CYCLES)}."),
    ])


class VerifyPaymentForm(ApiForm):
    """
    Body posted by the hosted checkout's success handler.
    Field names are the ones Razorpay hands to the client.
    """
    planId = IntegerField('Plan', validators=[DataRequired(message="planId is required.")])
    razorpay_payment_id = StringField('Payment ID', validators=[DataRequired(message="razorpay_payment_id is required."), Length(max=64)])
    razorpay_order_id = StringField('Order ID', validators=[DataRequired(message="razorpay_order_id is required."), Length(max=64)])
    razorpay_signature = StringField('Signature', validators=[DataRequired(message="razorpay_signature is required."), Length(max=128)])
