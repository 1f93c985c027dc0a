from extensions import db
from utils.helpers import utcnow

class PaymentMethod(db.Model):
    """
    A stored card for a user.

    Only display data is kept: the holder name, the detected card type, the last
    four digits and the expiry. The full number and the CVV are never persisted.
    For a user with at least one method, exactly one has is_default set.
    """
    __tablename__ = 'payment_methods'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    card_holder = db.Column(db.String(255), nullable=False)
    card_type = db.Column(db.String(20), nullable=False, default='unknown') # visa, mastercard, amex, discover, unknown.
    last_four = db.Column(db.String(4), nullable=False)
    expiry_month = db.Column(db.Integer, nullable=False)
    expiry_year = db.Column(db.Integer, nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    # Deleting a method keeps its payments; their payment_method_id is set to NULL.
    payments = db.relationship('Payment', backref='payment_method')

    def to_dict(self):
        return {
            'id': self.id,
            'card_holder': self.card_holder,
            'card_type': self.card_type,
            'last_four': self.last_four,
            'expiry_month': self.expiry_month,
            'expiry_year': self.expiry_year,
            'is_default': self.is_default,
        }

    def __repr__(self):
        return f'<PaymentMethod {self.card_type} ****{self.last_four} (user {self.user_id}, default={self.is_default})>'
