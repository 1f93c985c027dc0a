import enum
from extensions import db
from utils.helpers import utcnow

class PaymentStatusEnum(enum.Enum):
    """
    Payment statuses. The billing flows only ever write COMPLETED; the others are
    kept so the payment statistics can count them.
    """
    COMPLETED = 'completed'
    PENDING = 'pending'
    FAILED = 'failed'


class Payment(db.Model):
    """
    Money collected against an Invoice, or a bookkeeping credit for a downgrade.

    Append-only. transaction_id is 'TXN-<TOKEN>' for charges and 'CREDIT-<TOKEN>'
    for proration credits (no funds move for those).
    """
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False, unique=True, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey('payment_methods.id', ondelete='SET NULL'), nullable=True, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.Enum(PaymentStatusEnum), nullable=False, default=PaymentStatusEnum.COMPLETED, index=True)
    transaction_id = db.Column(db.String(32), unique=True, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    @property
    def is_credit(self):
        return bool(self.transaction_id) and self.transaction_id.startswith('CREDIT-')

    def to_dict(self):
        return {
            'id': self.id,
            'invoice_id': self.invoice_id,
            'payment_method_id': self.payment_method_id,
            'amount': str(self.amount),
            'status': self.status.value,
            'transaction_id': self.transaction_id,
            'is_credit': self.is_credit,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Payment {self.transaction_id} - {self.amount} - {self.status.value}>'
