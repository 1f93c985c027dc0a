from flask_wtf import FlaskForm
from wtforms import StringField, IntegerField, BooleanField, TextAreaField, SubmitField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, Regexp # Import standard validators.

class PaymentMethodForm(FlaskForm):
    """
    Form for adding a card.
    The expiry year range depends on the current date, so the billing service passes it
    in as an extra validator when it validates the form.
    """
    # Card holder: required, bounded like the database column.
    card_holder = StringField('Card Holder', validators=[DataRequired(message="Card holder name is required."), Length(max=255, message="Card holder name must be at most 255 characters.")])
    # Card number: exactly 16 digits, no spaces.
    card_number = StringField('Card Number', validators=[DataRequired(message="Card number is required."), Regexp(r'^\d{16}$', message="Card number must be exactly 16 digits.")])
    # Expiry month: 1 to 12.
    expiry_month = IntegerField('Expiry Month', validators=[DataRequired(message="Expiry month is required."), NumberRange(min=1, max=12, message="Expiry month must be between 1 and 12.")])
    expiry_year = IntegerField('Expiry Year', validators=[DataRequired(message="Expiry year is required.")])
    # CVV: used for the processing step only, never stored.
    cvv = StringField('CVV', validators=[DataRequired(message="CVV is required."), Regexp(r'^\d{3}$', message="CVV must be exactly 3 digits.")])
    is_default = BooleanField('Make Default')
    submit = SubmitField('Add Payment Method')

class CancelSubscriptionForm(FlaskForm):
    """
    Form for cancelling a subscription. A reason is mandatory; the minimum length is
    read from the app configuration by the billing service.
    """
    reason = TextAreaField('Cancellation Reason', validators=[DataRequired(message="Please tell us why you are cancelling.")])
    submit = SubmitField('Cancel Subscription')

class PlanSelectionForm(FlaskForm):
    """
    Form for choosing a plan (new subscription, plan change or reactivation).
    """
    plan_id = IntegerField('Plan', validators=[DataRequired(message="Please select a plan.")])
    payment_method_id = IntegerField('Payment Method', validators=[Optional()])
    submit = SubmitField('Confirm Plan')
