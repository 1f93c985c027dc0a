from extensions import db
from flask_login import UserMixin # For Flask-Login integration (e.g., current_user).
from utils.helpers import utcnow

class User(db.Model, UserMixin):
    """
    Represents an account holder of the tutoring platform (parent, client, teacher or admin).

    Authentication is handled outside the billing service, so this model only keeps
    what billing needs: identity, an optional role, and the relationships to the
    user's subscription, payment methods, invoices and payments. UserMixin provides
    the methods required by Flask-Login (e.g., is_authenticated, get_id).
    """
    __tablename__ = 'users' # Specifies the database table name.

    # --- Basic User Information ---
    id = db.Column(db.Integer, primary_key=True) # Unique identifier for the user.
    email = db.Column(db.String(120), unique=True, nullable=False, index=True) # Must be unique.
    full_name = db.Column(db.String(100), nullable=True)
    # Role name ('parent', 'client', 'teacher', 'admin'). Only consulted when the role system is enabled.
    role = db.Column(db.String(20), nullable=True, index=True)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # --- Relationships ---
    # 'lazy='dynamic'' means the collections are loaded as queries, not when the User is loaded.
    subscriptions = db.relationship('Subscription', backref='user', lazy='dynamic')
    payment_methods = db.relationship('PaymentMethod', backref='user', lazy='dynamic')
    invoices = db.relationship('Invoice', backref='user', lazy='dynamic')
    payments = db.relationship('Payment', backref='user', lazy='dynamic')

    def has_role(self, *roles):
        """Returns True if the user's role is one of `roles`."""
        return self.role is not None and self.role in roles

    def __repr__(self):
        """
        Provides a string representation of the User object, useful for debugging.
        """
        return f'<User {self.email}>'
