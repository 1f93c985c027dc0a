import enum
from extensions import db
from utils.helpers import utcnow

class InvoiceStatusEnum(enum.Enum):
    """
    Invoice statuses.

    Only UNPAID and PAID are stored. OVERDUE is the display status of an unpaid
    invoice whose due date has passed (see Invoice.display_status).
    """
    UNPAID = 'unpaid'
    PAID = 'paid'
    OVERDUE = 'overdue'


class Invoice(db.Model):
    """
    An amount owed by a user, optionally tied to their subscription.

    Invoices are append-only: the only change after creation is unpaid -> paid when
    a Payment settles it. invoice_number is the human-readable 'INV-<TOKEN>' reference.
    """
    __tablename__ = 'invoices'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey('subscriptions.id', ondelete='SET NULL'), nullable=True, index=True)

    invoice_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False) # Never negative; credits are recorded as paid invoices.
    status = db.Column(db.Enum(InvoiceStatusEnum), nullable=False, default=InvoiceStatusEnum.UNPAID, index=True)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    # An invoice is settled by at most one payment.
    payment = db.relationship('Payment', backref='invoice', uselist=False)

    @property
    def is_paid(self):
        return self.status == InvoiceStatusEnum.PAID

    def is_overdue(self, now):
        return not self.is_paid and self.due_date is not None and self.due_date < now

    def display_status(self, now):
        """'overdue' for an unpaid invoice past its due date, otherwise the stored status."""
        if self.is_overdue(now):
            return InvoiceStatusEnum.OVERDUE.value
        return self.status.value

    def to_dict(self, now):
        return {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'subscription_id': self.subscription_id,
            'amount': str(self.amount),
            'status': self.display_status(now),
            'description': self.description,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'payment': self.payment.to_dict() if self.payment else None,
        }

    def __repr__(self):
        return f'<Invoice {self.invoice_number} - {self.amount} - {self.status.value}>'
