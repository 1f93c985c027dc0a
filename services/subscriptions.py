from datetime import timedelta

from flask import current_app
from sqlalchemy import or_

from forms import CancelSubscriptionForm
from models import InvoiceStatusEnum, Subscription, SubscriptionStatusEnum
from services.exceptions import ConstraintViolation, NotFoundError, ValidationError
from services.ledger import create_invoice, record_payment
from services.payment_methods import get_default_payment_method, resolve_payment_method
from services.plan_catalog import get_active_plan
from services.proration import describe_proration, prorate
from services.transactions import atomic, lock_user
from utils.helpers import utcnow


def _interval_length(plan):
    return plan.interval_length(
        month_days=current_app.config.get('BILLING_CYCLE_DAYS', 30),
        year_days=current_app.config.get('BILLING_YEAR_DAYS', 365),
    )


def get_latest_subscription(user_id, lock=False):
    """The user's most recent subscription row in any state, or None."""
    query = Subscription.query.filter_by(user_id=user_id)\
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
    if lock:
        query = query.with_for_update()
    return query.first()


def get_current_subscription(user_id, now=None):
    """
    The user's live subscription: active, or cancelled with access still running.

    Returns None once a cancelled subscription has expired.
    """
    now = now or utcnow()
    return Subscription.query.filter_by(user_id=user_id)\
        .filter(or_(
            Subscription.status == SubscriptionStatusEnum.ACTIVE,
            (Subscription.status == SubscriptionStatusEnum.CANCELLED) & (Subscription.end_date > now),
        ))\
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())\
        .first()


def subscribe(user_id, plan_id, payment_method_id=None, now=None):
    """
    Starts a first subscription and charges the full plan price up front.

    Creates the active subscription, a paid 'Initial subscription' invoice and
    the completed payment for it, all in one transaction.

    Args:
        user_id (int): The subscribing user.
        plan_id (int): The chosen plan.
        payment_method_id (int, optional): Card to charge; defaults to the user's default card.
        now (datetime, optional): Start of the subscription.

    Returns:
        Subscription: The new subscription.

    Raises:
        NotFoundError: Unknown plan or card.
        ValidationError: The plan is no longer offered.
        ConstraintViolation: The user already has a subscription, or has no card.
        TransactionFailure: If the writes failed and were rolled back.
    """
    now = now or utcnow()
    plan = get_active_plan(plan_id)
    payment_method = resolve_payment_method(user_id, payment_method_id)
    if payment_method is None:
        current_app.logger.warning(f"User {user_id} tried to subscribe to plan {plan.id} without a payment method.")
        raise ConstraintViolation("No default payment method found. Please add a payment method first.")

    with atomic('subscription', user_id) as session:
        lock_user(user_id)
        if get_latest_subscription(user_id, lock=True) is not None:
            raise ConstraintViolation("You already have a subscription. Change your plan instead.")

        subscription = Subscription(
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatusEnum.ACTIVE,
            start_date=now,
            end_date=now + _interval_length(plan),
        )
        session.add(subscription)

        invoice = create_invoice(
            user_id,
            plan.price,
            f"Initial subscription: {plan.name}",
            due_date=now,
            status=InvoiceStatusEnum.PAID,
            subscription=subscription,
        )
        payment = record_payment(invoice, payment_method, plan.price)

    current_app.logger.info(f"User {user_id} subscribed to {plan.name} (subscription {subscription.id}, invoice {invoice.invoice_number}, transaction {payment.transaction_id}).")
    return subscription


def change_plan(user_id, plan_id, payment_method_id=None, now=None):
    """
    Moves the user's subscription to another plan, or reactivates a cancelled one.

    The difference between the plans' daily rates over the days left until
    end_date is billed as an unpaid invoice (upgrade) or recorded as a paid
    invoice with a 'CREDIT-' payment (downgrade). Both are due INVOICE_DUE_DAYS
    from now. Nothing is invoiced when the proration rounds to zero.

    A cancelled subscription becomes active again with a fresh interval starting
    now. When its access had already expired, there is nothing left to prorate:
    the new period is charged in full, like a first subscription, with a paid
    'Initial subscription' invoice and a 'TXN-' payment.

    Returns:
        tuple: (Subscription, Invoice or None)

    Raises:
        NotFoundError: The user has no subscription, or the plan or card is unknown.
        ValidationError: The plan is no longer offered.
        ConstraintViolation: The subscription is active and already on this plan,
                             or an expired one is renewed with no card to charge.
        TransactionFailure: If the writes failed and were rolled back.
    """
    now = now or utcnow()
    new_plan = get_active_plan(plan_id)
    cycle_days = current_app.config.get('BILLING_CYCLE_DAYS', 30)
    due_days = current_app.config.get('INVOICE_DUE_DAYS', 7)

    invoice = None
    with atomic('plan change', user_id):
        lock_user(user_id)
        subscription = get_latest_subscription(user_id, lock=True)
        if subscription is None:
            raise NotFoundError('Subscription')
        old_plan = subscription.plan
        if subscription.is_active and old_plan.id == new_plan.id:
            current_app.logger.warning(f"User {user_id} tried to change to their current plan {new_plan.name}.")
            raise ConstraintViolation(f"You are already subscribed to {new_plan.name}.")

        reactivated = subscription.is_cancelled
        renewed = reactivated and not subscription.has_access(now)
        if renewed:
            payment_method = resolve_payment_method(user_id, payment_method_id)
            if payment_method is None:
                current_app.logger.warning(f"User {user_id} tried to renew expired subscription {subscription.id} without a payment method.")
                raise ConstraintViolation("No default payment method found. Please add a payment method first.")
            amount = new_plan.price
        else:
            # Proration runs against the cycle being left, before any reactivation.
            amount = prorate(old_plan.price, new_plan.price, subscription.end_date, now, cycle_length_days=cycle_days)

        subscription.plan = new_plan
        if reactivated:
            subscription.status = SubscriptionStatusEnum.ACTIVE
            subscription.cancelled_at = None
            subscription.cancellation_reason = None
            subscription.end_date = now + _interval_length(new_plan)
            if renewed:
                subscription.start_date = now

        if renewed:
            invoice = create_invoice(
                user_id,
                amount,
                f"Initial subscription: {new_plan.name}",
                due_date=now,
                status=InvoiceStatusEnum.PAID,
                subscription=subscription,
            )
            record_payment(invoice, payment_method, amount)
        elif amount > 0:
            invoice = create_invoice(
                user_id,
                amount,
                describe_proration(amount, old_plan.name, new_plan.name),
                due_date=now + timedelta(days=due_days),
                subscription=subscription,
            )
        elif amount < 0:
            invoice = create_invoice(
                user_id,
                abs(amount),
                describe_proration(amount, old_plan.name, new_plan.name),
                due_date=now + timedelta(days=due_days),
                status=InvoiceStatusEnum.PAID,
                subscription=subscription,
            )
            record_payment(invoice, get_default_payment_method(user_id), abs(amount), credit=True)

    current_app.logger.info(
        f"User {user_id} moved subscription {subscription.id} from {old_plan.name} to {new_plan.name}"
        f" (amount {amount}, reactivated={reactivated}, renewed={renewed})."
    )
    return subscription, invoice


def reactivate(user_id, plan_id=None, payment_method_id=None, now=None):
    """
    Reactivates a cancelled subscription on the given plan, or on its current one.

    Raises:
        NotFoundError: The user has no subscription.
        ConstraintViolation: The subscription is not cancelled.
    """
    subscription = get_latest_subscription(user_id)
    if subscription is None:
        raise NotFoundError('Subscription')
    if not subscription.is_cancelled:
        raise ConstraintViolation("Only a cancelled subscription can be reactivated.")
    plan_id = plan_id if plan_id is not None else subscription.plan_id
    return change_plan(user_id, plan_id, payment_method_id=payment_method_id, now=now)


def select_plan(user_id, plan_id, payment_method_id=None, now=None):
    """
    Single entry point for picking a plan: subscribes a user without a
    subscription, and changes the plan otherwise.

    Returns:
        tuple: (Subscription, Invoice or None). For a new subscription the
               invoice is the paid initial one.
    """
    if get_latest_subscription(user_id) is None:
        subscription = subscribe(user_id, plan_id, payment_method_id=payment_method_id, now=now)
        return subscription, subscription.invoices.first()
    return change_plan(user_id, plan_id, payment_method_id=payment_method_id, now=now)


def cancel(user_id, reason, now=None):
    """
    Cancels the user's subscription at the end of the paid period.

    end_date is left alone, so access continues until then.

    Args:
        user_id (int): The cancelling user.
        reason (str): Why the user cancels; at least CANCELLATION_REASON_MIN_LENGTH
                      characters once stripped.
        now (datetime, optional): Cancellation time.

    Raises:
        ValidationError: The reason is missing, not text, or too short.
        NotFoundError: The user has no subscription.
        ConstraintViolation: The subscription is not active.
    """
    now = now or utcnow()
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("The cancellation reason must be text.", field='reason')
    reason = (reason or '').strip()
    min_length = current_app.config.get('CANCELLATION_REASON_MIN_LENGTH', 10)
    form = CancelSubscriptionForm(formdata=None, data={'reason': reason}, meta={'csrf': False})
    if not form.validate():
        raise ValidationError.from_form(form, "A cancellation reason is required.")
    if len(reason) < min_length:
        raise ValidationError(
            f"Please provide a cancellation reason of at least {min_length} characters.",
            field='reason',
        )

    with atomic('cancellation', user_id):
        lock_user(user_id)
        subscription = get_latest_subscription(user_id, lock=True)
        if subscription is None:
            raise NotFoundError('Subscription')
        if not subscription.is_active:
            current_app.logger.warning(f"User {user_id} tried to cancel subscription {subscription.id} with status {subscription.status.value}.")
            raise ConstraintViolation("Only an active subscription can be cancelled.")
        subscription.status = SubscriptionStatusEnum.CANCELLED
        subscription.cancelled_at = now
        subscription.cancellation_reason = reason

    current_app.logger.info(f"User {user_id} cancelled subscription {subscription.id}; access continues until {subscription.end_date}.")
    return subscription
