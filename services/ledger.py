from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from extensions import db
from models import Invoice, InvoiceStatusEnum, Payment, PaymentStatusEnum
from services.exceptions import ConstraintViolation, NotFoundError, ValidationError
from services.payment_methods import resolve_payment_method
from services.transactions import atomic, lock_user
from utils.helpers import (
    apply_amount_filter, apply_date_filter, generate_reference, resolve_date_range, to_money, utcnow,
)

INVOICE_PREFIX = 'INV'
CHARGE_PREFIX = 'TXN'
CREDIT_PREFIX = 'CREDIT'

INVOICE_SORT_FIELDS = {
    'created_at': Invoice.created_at,
    'due_date': Invoice.due_date,
    'amount': Invoice.amount,
    'status': Invoice.status,
    'invoice_number': Invoice.invoice_number,
}
PAYMENT_SORT_FIELDS = {
    'created_at': Payment.created_at,
    'amount': Payment.amount,
    'status': Payment.status,
    'transaction_id': Payment.transaction_id,
}


# --- Writers (used inside a caller's transaction; they flush but never commit) ---

def create_invoice(user_id, amount, description, due_date, status=InvoiceStatusEnum.UNPAID, subscription=None):
    invoice = Invoice(
        user_id=user_id,
        subscription=subscription,
        invoice_number=generate_reference(INVOICE_PREFIX),
        amount=to_money(amount),
        status=status,
        description=description,
        due_date=due_date,
    )
    db.session.add(invoice)
    db.session.flush()
    return invoice


def record_payment(invoice, payment_method, amount, credit=False):
    """Appends a completed payment (or a bookkeeping credit) settling `invoice`."""
    payment = Payment(
        user_id=invoice.user_id,
        invoice=invoice,
        payment_method=payment_method,
        amount=to_money(amount),
        status=PaymentStatusEnum.COMPLETED,
        transaction_id=generate_reference(CREDIT_PREFIX if credit else CHARGE_PREFIX),
    )
    db.session.add(payment)
    db.session.flush()
    return payment


# --- Invoices ---

def get_invoice(user_id, invoice_id):
    """
    Raises:
        NotFoundError: If the invoice does not exist or belongs to someone else.
    """
    invoice = Invoice.query.filter_by(id=invoice_id, user_id=user_id).first()
    if invoice is None:
        raise NotFoundError('Invoice', invoice_id)
    return invoice


def pay_invoice(user_id, invoice_id, payment_method_id=None, now=None):
    """
    Settles an unpaid invoice with the given card, or the user's default card.

    Writes a completed 'TXN-' payment for the full amount and marks the invoice
    paid, in one transaction.

    Raises:
        NotFoundError: Unknown invoice or card.
        ConstraintViolation: Invoice already paid, or no card to charge.
        TransactionFailure: If the writes failed and were rolled back.
    """
    now = now or utcnow()
    invoice = get_invoice(user_id, invoice_id)
    if invoice.is_paid:
        current_app.logger.warning(f"User {user_id} tried to pay invoice {invoice.invoice_number} which is already paid.")
        raise ConstraintViolation(f"Invoice {invoice.invoice_number} has already been paid.")
    payment_method = resolve_payment_method(user_id, payment_method_id)
    if payment_method is None:
        raise ConstraintViolation("No default payment method found. Please add a payment method first.")

    with atomic('invoice payment', user_id):
        lock_user(user_id)
        invoice = Invoice.query.filter_by(id=invoice_id, user_id=user_id).with_for_update().one()
        if invoice.is_paid:
            raise ConstraintViolation(f"Invoice {invoice.invoice_number} has already been paid.")
        payment = record_payment(invoice, payment_method, invoice.amount)
        invoice.status = InvoiceStatusEnum.PAID

    current_app.logger.info(f"Invoice {invoice.invoice_number} paid by user {user_id} with payment method {payment_method.id} (transaction {payment.transaction_id}).")
    return payment


def _overdue_clause(now):
    return (Invoice.status == InvoiceStatusEnum.UNPAID) & (Invoice.due_date < now)


def list_invoices(user_id, filters=None, now=None):
    """
    The user's invoices narrowed by the listing filters.

    Args:
        user_id (int): Owner of the invoices.
        filters (dict, optional): Any of
            status: 'all', 'paid', 'unpaid' or 'overdue' (unpaid and past due).
            date_range: see utils.helpers.resolve_date_range; 'custom' reads
                        start_date / end_date.
            amount: 'all', 'under_25', '25_50', '50_100', 'over_100'.
            search: substring of the invoice number or description.
            subscription: 'all', 'subscription' or 'one_time'.
            sort: one of INVOICE_SORT_FIELDS (default 'created_at').
            direction: 'asc' or 'desc' (default 'desc').
        now (datetime, optional): Reference time for relative ranges and overdue.

    Returns:
        list of Invoice.

    Raises:
        ValidationError: For an unsupported filter value.
    """
    filters = filters or {}
    now = now or utcnow()
    query = Invoice.query.filter_by(user_id=user_id)

    status = filters.get('status') or 'all'
    if status == 'overdue':
        query = query.filter(_overdue_clause(now))
    elif status == 'unpaid':
        query = query.filter(Invoice.status == InvoiceStatusEnum.UNPAID)
    elif status == 'paid':
        query = query.filter(Invoice.status == InvoiceStatusEnum.PAID)
    elif status != 'all':
        raise ValidationError(f"Unsupported status filter '{status}'.", field='status')

    window = resolve_date_range(filters.get('date_range'), now, filters.get('start_date'), filters.get('end_date'))
    query = apply_date_filter(query, Invoice.created_at, window)
    query = apply_amount_filter(query, Invoice.amount, filters.get('amount'))

    search = (filters.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Invoice.invoice_number.ilike(pattern), Invoice.description.ilike(pattern)))

    kind = filters.get('subscription') or 'all'
    if kind == 'subscription':
        query = query.filter(Invoice.subscription_id.isnot(None))
    elif kind == 'one_time':
        query = query.filter(Invoice.subscription_id.is_(None))
    elif kind != 'all':
        raise ValidationError(f"Unsupported subscription filter '{kind}'.", field='subscription')

    query = _apply_sort(query, INVOICE_SORT_FIELDS, filters, Invoice.id)
    return query.all()


def invoice_stats(user_id, now=None):
    """
    Totals shown above the invoice list.

    'total_unpaid' includes overdue invoices; 'invoices_due_soon' counts unpaid
    invoices due within INVOICE_DUE_SOON_DAYS from now.
    """
    now = now or utcnow()
    due_soon_days = current_app.config.get('INVOICE_DUE_SOON_DAYS', 7)
    invoices = Invoice.query.filter_by(user_id=user_id).all()

    total_amount = sum((inv.amount for inv in invoices), Decimal('0'))
    total_paid = sum((inv.amount for inv in invoices if inv.is_paid), Decimal('0'))
    total_unpaid = sum((inv.amount for inv in invoices if not inv.is_paid), Decimal('0'))
    total_overdue = sum((inv.amount for inv in invoices if inv.is_overdue(now)), Decimal('0'))
    due_soon_until = now + timedelta(days=due_soon_days)
    due_soon = sum(
        1 for inv in invoices
        if not inv.is_paid and inv.due_date is not None and now <= inv.due_date <= due_soon_until
    )

    return {
        'total_amount': to_money(total_amount),
        'total_paid': to_money(total_paid),
        'total_unpaid': to_money(total_unpaid),
        'total_overdue': to_money(total_overdue),
        'invoices_due_soon': due_soon,
        'average_amount': to_money(total_amount / len(invoices)) if invoices else to_money(0),
    }


# --- Payments ---

def list_payments(user_id, filters=None, now=None):
    """
    The user's payments narrowed by the listing filters.

    Args:
        filters (dict, optional): Any of
            status: 'all', 'completed', 'pending' or 'failed'.
            date_range: 'today', 'this_week', 'this_month', 'last_month',
                        'this_year', 'last_year' (or any other resolve_date_range key).
            amount: same buckets as the invoice listing.
            search: substring of the transaction id or of the invoice number.
            method: a payment method id.
            sort / direction: over PAYMENT_SORT_FIELDS.

    Raises:
        ValidationError: For an unsupported filter value.
    """
    filters = filters or {}
    now = now or utcnow()
    query = Payment.query.filter(Payment.user_id == user_id)

    status = filters.get('status') or 'all'
    if status != 'all':
        try:
            query = query.filter(Payment.status == PaymentStatusEnum(status))
        except ValueError:
            raise ValidationError(f"Unsupported status filter '{status}'.", field='status')

    window = resolve_date_range(filters.get('date_range'), now, filters.get('start_date'), filters.get('end_date'))
    query = apply_date_filter(query, Payment.created_at, window)
    query = apply_amount_filter(query, Payment.amount, filters.get('amount'))

    search = (filters.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.join(Invoice, Payment.invoice_id == Invoice.id)\
            .filter(or_(Payment.transaction_id.ilike(pattern), Invoice.invoice_number.ilike(pattern)))

    method = filters.get('method')
    if method not in (None, '', 'all'):
        try:
            query = query.filter(Payment.payment_method_id == int(method))
        except (TypeError, ValueError):
            raise ValidationError(f"Unsupported payment method filter '{method}'.", field='method')

    query = _apply_sort(query, PAYMENT_SORT_FIELDS, filters, Payment.id)
    return query.all()


def payment_stats(user_id):
    """
    Totals shown above the payment list. 'recurring_payments' counts completed
    payments on invoices that belong to a subscription.
    """
    completed = Payment.status == PaymentStatusEnum.COMPLETED
    base = Payment.query.filter(Payment.user_id == user_id)

    # Summed in Python so the totals stay exact Decimals on every backend.
    amounts = [amount for (amount,) in db.session.query(Payment.amount).filter(Payment.user_id == user_id, completed)]
    total_spent = sum(amounts, Decimal('0'))
    counts = dict(
        db.session.query(Payment.status, func.count(Payment.id))
        .filter(Payment.user_id == user_id)
        .group_by(Payment.status)
        .all()
    )
    recurring = base.join(Invoice, Payment.invoice_id == Invoice.id)\
        .filter(completed, Invoice.subscription_id.isnot(None)).count()

    return {
        'total_spent': to_money(total_spent),
        'successful_payments': counts.get(PaymentStatusEnum.COMPLETED, 0),
        'failed_payments': counts.get(PaymentStatusEnum.FAILED, 0),
        'pending_payments': counts.get(PaymentStatusEnum.PENDING, 0),
        'average_payment': to_money(total_spent / len(amounts)) if amounts else to_money(0),
        'recurring_payments': recurring,
    }


def _apply_sort(query, allowed, filters, tiebreaker):
    field = filters.get('sort') or 'created_at'
    direction = (filters.get('direction') or 'desc').lower()
    if field not in allowed:
        raise ValidationError(f"Cannot sort by '{field}'.", field='sort')
    if direction not in ('asc', 'desc'):
        raise ValidationError(f"Unsupported sort direction '{direction}'.", field='direction')
    column = allowed[field]
    if direction == 'asc':
        return query.order_by(column.asc(), tiebreaker.asc())
    return query.order_by(column.desc(), tiebreaker.desc())
