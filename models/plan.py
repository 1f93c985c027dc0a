import enum
from datetime import timedelta
from extensions import db # Import the SQLAlchemy instance from extensions.
from sqlalchemy.orm import validates
from utils.helpers import utcnow

class PlanIntervalEnum(enum.Enum):
    """
    Billing interval of a plan.
    """
    MONTH = 'month'
    YEAR = 'year'

class Plan(db.Model):
    """
    Represents a subscription tier offered to parents and clients.

    Stores the tier's name, price, billing interval, an ordered list of feature
    strings and the resource limits the usage meter compares consumption against.
    A limit of None means the tier does not cap that resource.
    """
    __tablename__ = 'plans' # Specifies the database table name.

    # --- Plan Identification and Details ---
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False) # e.g. "Basic Plan", "Family Plan".
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=False) # Numeric for exact currency values.
    interval = db.Column(db.Enum(PlanIntervalEnum), nullable=False, default=PlanIntervalEnum.MONTH)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # --- Features ---
    # Ordered list of feature strings, e.g. ["Up to 3 children", "Priority email support"].
    features = db.Column(db.JSON, nullable=False, default=list)

    # --- Resource Limits ---
    children_limit = db.Column(db.Integer, nullable=True)
    sessions_limit = db.Column(db.Integer, nullable=True) # Sessions per calendar month.
    storage_limit = db.Column(db.Integer, nullable=True)  # Megabytes.

    created_at = db.Column(db.DateTime, default=utcnow)

    subscriptions = db.relationship('Subscription', backref='plan', lazy='dynamic')

    @validates('features')
    def validate_features(self, key, features):
        """Keeps `features` a list of non-empty strings, preserving order."""
        if features is None:
            return []
        if isinstance(features, str) or not all(isinstance(f, str) and f.strip() for f in features):
            raise ValueError("Plan features must be a list of non-empty strings.")
        return [f.strip() for f in features]

    def interval_length(self, month_days=30, year_days=365):
        """Length of one billing interval as a timedelta (fixed-length months)."""
        if self.interval == PlanIntervalEnum.YEAR:
            return timedelta(days=year_days)
        return timedelta(days=month_days)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'price': str(self.price),
            'interval': self.interval.value,
            'features': list(self.features or []),
            'is_active': self.is_active,
            'children_limit': self.children_limit,
            'sessions_limit': self.sessions_limit,
            'storage_limit': self.storage_limit,
        }

    def __repr__(self):
        """
        Provides a string representation of the Plan object, useful for debugging.
        """
        return f'<Plan {self.name} - {self.price}/{self.interval.value}>'
