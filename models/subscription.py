import enum
from extensions import db # Import the SQLAlchemy instance.
from utils.helpers import utcnow

class SubscriptionStatusEnum(enum.Enum):
    """
    Stored statuses of a subscription.

    'expired' is never stored: a cancelled subscription whose end_date has passed
    is reported as expired by Subscription.effective_status().
    """
    ACTIVE = 'active'        # Paid up; renews at end_date.
    CANCELLED = 'cancelled'  # Cancelled by the user; access continues until end_date.

EXPIRED = 'expired'


class Subscription(db.Model):
    """
    Represents a user's subscription to a Plan.

    A user has a single subscription row. It is created on the first plan selection,
    mutated on plan change, cancellation and reactivation, and never deleted.
    end_date is the next renewal date while active, and the access-expiry boundary
    once cancelled.
    """
    __tablename__ = 'subscriptions' # Specifies the database table name.

    id = db.Column(db.Integer, primary_key=True)

    # --- Foreign Keys ---
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id'), nullable=False, index=True)

    # --- Lifecycle ---
    status = db.Column(db.Enum(SubscriptionStatusEnum), nullable=False, default=SubscriptionStatusEnum.ACTIVE, index=True)
    start_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    end_date = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    invoices = db.relationship('Invoice', backref='subscription', lazy='dynamic')

    @property
    def is_active(self):
        return self.status == SubscriptionStatusEnum.ACTIVE

    @property
    def is_cancelled(self):
        return self.status == SubscriptionStatusEnum.CANCELLED

    def has_access(self, now):
        """True while active, or while cancelled and end_date is still ahead of `now`."""
        if self.is_active:
            return True
        return self.end_date is not None and now < self.end_date

    def effective_status(self, now):
        """Stored status, except 'expired' for a cancelled subscription past its end_date."""
        if self.is_cancelled and (self.end_date is None or self.end_date <= now):
            return EXPIRED
        return self.status.value

    def to_dict(self, now):
        return {
            'id': self.id,
            'plan': self.plan.to_dict() if self.plan else None,
            'status': self.effective_status(now),
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            # Next billing date is only meaningful while the subscription renews.
            'next_billing_date': self.end_date.isoformat() if self.is_active and self.end_date else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancellation_reason': self.cancellation_reason,
            'has_access': self.has_access(now),
        }

    def __repr__(self):
        """
        Provides a string representation of the Subscription object, useful for debugging.
        """
        return f'<Subscription {self.user_id} - Plan {self.plan_id} - Status {self.status.value}>'
