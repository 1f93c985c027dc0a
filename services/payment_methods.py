from flask import current_app
from wtforms.validators import NumberRange

from forms import PaymentMethodForm
from models import PaymentMethod
from services.exceptions import ConstraintViolation, NotFoundError, ValidationError
from services.transactions import atomic, lock_user
from utils.helpers import detect_card_type, parse_flag, utcnow

_STRING_FIELDS = ('card_holder', 'card_number', 'cvv')


def list_payment_methods(user_id):
    """The user's cards, default first, then newest first."""
    return PaymentMethod.query.filter_by(user_id=user_id)\
        .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc(), PaymentMethod.id.desc())\
        .all()


def get_payment_method(user_id, method_id, lock=False):
    """
    Fetches one of the user's cards.

    Raises:
        NotFoundError: If the card does not exist or belongs to someone else.
    """
    query = PaymentMethod.query.filter_by(id=method_id, user_id=user_id)
    if lock:
        query = query.with_for_update()
    method = query.first()
    if method is None:
        raise NotFoundError('Payment method', method_id)
    return method


def get_default_payment_method(user_id):
    return PaymentMethod.query.filter_by(user_id=user_id, is_default=True).first()


def resolve_payment_method(user_id, method_id=None):
    """
    The card to charge: the given one (which must belong to the user), else the default.

    Returns None when the user has no default card and none was given.
    """
    if method_id is not None:
        return get_payment_method(user_id, method_id)
    return get_default_payment_method(user_id)


def _lock_user_methods(user_id):
    return PaymentMethod.query.filter_by(user_id=user_id)\
        .order_by(PaymentMethod.id)\
        .with_for_update()\
        .all()


def validate_card_details(card_details, now):
    """
    Validates raw card input with PaymentMethodForm.

    Returns:
        PaymentMethodForm: The validated form, with typed data.

    Raises:
        ValidationError: Carrying the per-field messages.
    """
    data = dict(card_details or {})
    for field in _STRING_FIELDS:
        if data.get(field) is not None:
            data[field] = str(data[field]).strip()
    # BooleanField with formdata=None would take bool('false') as True.
    data['is_default'] = parse_flag(data.get('is_default'), 'is_default')

    max_years_ahead = current_app.config.get('CARD_EXPIRY_MAX_YEARS_AHEAD', 20)
    form = PaymentMethodForm(formdata=None, data=data, meta={'csrf': False})
    year_range = NumberRange(
        min=now.year,
        max=now.year + max_years_ahead,
        message=f"Expiry year must be between {now.year} and {now.year + max_years_ahead}.",
    )
    if not form.validate(extra_validators={'expiry_year': [year_range]}):
        raise ValidationError.from_form(form, "The card details are invalid.")
    return form


def add_payment_method(user_id, card_details, make_default=False, now=None):
    """
    Stores a new card for the user.

    The first card a user adds always becomes the default; later cards become the
    default when `make_default` (or card_details['is_default']) is set, clearing the
    flag on the user's other cards in the same transaction. The CVV is validated and
    then discarded.

    Args:
        user_id (int): Owner of the card.
        card_details (dict): card_holder, card_number, expiry_month, expiry_year, cvv
                             and optionally is_default.
        make_default (bool): Request this card to become the default.
        now (datetime, optional): Reference time for the expiry-year check.

    Returns:
        PaymentMethod: The stored card.

    Raises:
        ValidationError: If any card field is invalid.
        TransactionFailure: If the write failed and was rolled back.
    """
    now = now or utcnow()
    form = validate_card_details(card_details, now)
    wants_default = bool(make_default or form.is_default.data)

    with atomic('payment method creation', user_id) as session:
        lock_user(user_id)
        existing = _lock_user_methods(user_id)
        becomes_default = not existing or wants_default
        if becomes_default:
            for other in existing:
                other.is_default = False

        method = PaymentMethod(
            user_id=user_id,
            card_holder=form.card_holder.data,
            card_type=detect_card_type(form.card_number.data),
            last_four=form.card_number.data[-4:],
            expiry_month=form.expiry_month.data,
            expiry_year=form.expiry_year.data,
            is_default=becomes_default,
        )
        session.add(method)

    current_app.logger.info(f"Payment method {method.id} ({method.card_type} ****{method.last_four}) added for user {user_id}, default={method.is_default}.")
    return method


def set_default_payment_method(user_id, method_id):
    """
    Makes one of the user's cards the default.

    All of the user's cards are locked and re-flagged in one transaction, so there
    is never a moment with zero or two defaults.

    Raises:
        NotFoundError: If the card does not exist or belongs to someone else.
    """
    with atomic('default payment method update', user_id):
        lock_user(user_id)
        methods = _lock_user_methods(user_id)
        target = next((m for m in methods if m.id == method_id), None)
        if target is None:
            raise NotFoundError('Payment method', method_id)
        for method in methods:
            method.is_default = method.id == target.id

    current_app.logger.info(f"Default payment method for user {user_id} set to {method_id}.")
    return target


def delete_payment_method(user_id, method_id):
    """
    Removes one of the user's cards.

    The last remaining card cannot be removed. When the default card is removed,
    the remaining card with the lowest id becomes the default.

    Returns:
        PaymentMethod or None: The card promoted to default, if any.

    Raises:
        NotFoundError: If the card does not exist or belongs to someone else.
        ConstraintViolation: If it is the user's only card.
    """
    promoted = None
    with atomic('payment method deletion', user_id) as session:
        lock_user(user_id)
        methods = _lock_user_methods(user_id)
        target = next((m for m in methods if m.id == method_id), None)
        if target is None:
            raise NotFoundError('Payment method', method_id)
        if len(methods) <= 1:
            current_app.logger.warning(f"User {user_id} tried to delete their only payment method {method_id}.")
            raise ConstraintViolation("You cannot delete your only payment method. Add another card first.")

        if target.is_default:
            promoted = next(m for m in methods if m.id != target.id)
            promoted.is_default = True
        session.delete(target)

    current_app.logger.info(
        f"Payment method {method_id} deleted for user {user_id}"
        + (f"; payment method {promoted.id} is now the default." if promoted else ".")
    )
    return promoted
