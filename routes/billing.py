from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from forms import PlanSelectionForm
from services import ledger, payment_methods, plan_catalog, subscriptions, usage
from services.exceptions import ValidationError
from utils.decorators import role_required
from utils.helpers import utcnow

# Blueprint for billing-related routes.
# Every route is JSON only and acts for the logged-in user; the services raise
# typed billing errors which the app-level error handler renders.
billing_bp = Blueprint('billing', __name__, url_prefix='/billing')

# Query parameters understood by the invoice and payment listings.
INVOICE_FILTER_KEYS = ('status', 'date_range', 'start_date', 'end_date', 'amount', 'search', 'subscription', 'sort', 'direction')
PAYMENT_FILTER_KEYS = ('status', 'date_range', 'start_date', 'end_date', 'amount', 'search', 'method', 'sort', 'direction')


def _json_body():
    """The request's JSON object, or an empty dict when the body is missing or not JSON."""
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _filters(keys):
    return {key: request.args.get(key) for key in keys if request.args.get(key) not in (None, '')}


def _plan_selection(body, plan_required=True):
    """Validates plan_id / payment_method_id with PlanSelectionForm and returns them."""
    form = PlanSelectionForm(formdata=None, data=body, meta={'csrf': False})
    if not plan_required and body.get('plan_id') in (None, ''):
        del form.plan_id # Reactivation may keep the current plan.
        if not form.validate():
            raise ValidationError.from_form(form)
        return None, form.payment_method_id.data
    if not form.validate():
        raise ValidationError.from_form(form)
    return form.plan_id.data, form.payment_method_id.data


# --- Plans ---

@billing_bp.route('/plans')
@login_required
def list_plans():
    """Returns the active plans, cheapest first."""
    return jsonify([plan.to_dict() for plan in plan_catalog.list_active_plans()])


# --- Subscription ---

@billing_bp.route('/subscription')
@login_required
@role_required()
def get_subscription():
    """
    Returns the user's live subscription (or null) with its access flags.
    An expired subscription is reported as null with has_access false.
    """
    now = utcnow()
    subscription = subscriptions.get_current_subscription(current_user.id, now=now)
    return jsonify({
        'subscription': subscription.to_dict(now) if subscription else None,
        'has_access': subscription.has_access(now) if subscription else False,
    })


@billing_bp.route('/subscription', methods=['POST'])
@login_required
@role_required()
def select_plan():
    """
    Subscribes the user, or changes their plan (reactivating a cancelled subscription).

    JSON body:
        plan_id (int): The chosen plan.
        payment_method_id (int, optional): Card for a first subscription or the renewal of an expired one;
            defaults to the default card.
    """
    plan_id, payment_method_id = _plan_selection(_json_body())
    now = utcnow()
    subscription, invoice = subscriptions.select_plan(current_user.id, plan_id, payment_method_id=payment_method_id, now=now)
    return jsonify({
        'subscription': subscription.to_dict(now),
        'invoice': invoice.to_dict(now) if invoice else None,
    })


@billing_bp.route('/subscription/cancel', methods=['POST'])
@login_required
@role_required()
def cancel_subscription():
    """Cancels at the end of the paid period. JSON body: reason (str)."""
    now = utcnow()
    subscription = subscriptions.cancel(current_user.id, _json_body().get('reason'), now=now)
    return jsonify({'subscription': subscription.to_dict(now)})


@billing_bp.route('/subscription/reactivate', methods=['POST'])
@login_required
@role_required()
def reactivate_subscription():
    """Reactivates a cancelled subscription. JSON body: plan_id, payment_method_id (int, optional)."""
    plan_id, payment_method_id = _plan_selection(_json_body(), plan_required=False)
    now = utcnow()
    subscription, invoice = subscriptions.reactivate(
        current_user.id, plan_id=plan_id, payment_method_id=payment_method_id, now=now,
    )
    return jsonify({
        'subscription': subscription.to_dict(now),
        'invoice': invoice.to_dict(now) if invoice else None,
    })


@billing_bp.route('/usage')
@login_required
@role_required()
def get_usage():
    """Returns children / sessions / storage consumption against the live plan's limits."""
    return jsonify(usage.usage_for_user(current_user.id))


# --- Payment methods ---

@billing_bp.route('/payment-methods')
@login_required
@role_required()
def list_payment_methods():
    return jsonify([method.to_dict() for method in payment_methods.list_payment_methods(current_user.id)])


@billing_bp.route('/payment-methods', methods=['POST'])
@login_required
@role_required()
def add_payment_method():
    """
    Stores a card.

    JSON body:
        card_holder, card_number (16 digits), expiry_month, expiry_year, cvv (3 digits),
        is_default (bool, optional).
    """
    body = _json_body()
    method = payment_methods.add_payment_method(current_user.id, body)
    return jsonify(method.to_dict()), 201


@billing_bp.route('/payment-methods/<int:method_id>/default', methods=['POST'])
@login_required
@role_required()
def set_default_payment_method(method_id):
    method = payment_methods.set_default_payment_method(current_user.id, method_id)
    return jsonify(method.to_dict())


@billing_bp.route('/payment-methods/<int:method_id>', methods=['DELETE'])
@login_required
@role_required()
def delete_payment_method(method_id):
    """Deletes a card. The response names the card promoted to default, if any."""
    promoted = payment_methods.delete_payment_method(current_user.id, method_id)
    return jsonify({'deleted': method_id, 'new_default': promoted.to_dict() if promoted else None})


# --- Invoices ---

@billing_bp.route('/invoices')
@login_required
@role_required()
def list_invoices():
    """
    Lists the user's invoices.

    Query Parameters:
        status, date_range (with start_date / end_date for 'custom'), amount,
        search, subscription, sort, direction. See services.ledger.list_invoices.
    """
    now = utcnow()
    filters = _filters(INVOICE_FILTER_KEYS)
    current_app.logger.debug(f"Invoice listing for user {current_user.id} with filters {filters}")
    invoices = ledger.list_invoices(current_user.id, filters, now=now)
    return jsonify([invoice.to_dict(now) for invoice in invoices])


@billing_bp.route('/invoices/stats')
@login_required
@role_required()
def invoice_stats():
    return jsonify(ledger.invoice_stats(current_user.id))


@billing_bp.route('/invoices/<int:invoice_id>')
@login_required
@role_required()
def get_invoice(invoice_id):
    return jsonify(ledger.get_invoice(current_user.id, invoice_id).to_dict(utcnow()))


@billing_bp.route('/invoices/<int:invoice_id>/pay', methods=['POST'])
@login_required
@role_required()
def pay_invoice(invoice_id):
    """Pays an unpaid invoice. JSON body: payment_method_id (int, optional; defaults to the default card)."""
    payment_method_id = _json_body().get('payment_method_id')
    if payment_method_id is not None:
        try:
            payment_method_id = int(payment_method_id)
        except (TypeError, ValueError):
            raise ValidationError("payment_method_id must be an integer.", field='payment_method_id')
    now = utcnow()
    payment = ledger.pay_invoice(current_user.id, invoice_id, payment_method_id=payment_method_id, now=now)
    return jsonify({'payment': payment.to_dict(), 'invoice': payment.invoice.to_dict(now)})


# --- Payments ---

@billing_bp.route('/payments')
@login_required
@role_required()
def list_payments():
    """
    Lists the user's payments.

    Query Parameters:
        status, date_range, amount, search, method, sort, direction.
        See services.ledger.list_payments.
    """
    filters = _filters(PAYMENT_FILTER_KEYS)
    payments = ledger.list_payments(current_user.id, filters, now=utcnow())
    return jsonify([payment.to_dict() for payment in payments])


@billing_bp.route('/payments/stats')
@login_required
@role_required()
def payment_stats():
    return jsonify(ledger.payment_stats(current_user.id))
