from .user import User
from .plan import Plan, PlanIntervalEnum
from .subscription import Subscription, SubscriptionStatusEnum, EXPIRED
from .payment_method import PaymentMethod
from .invoice import Invoice, InvoiceStatusEnum
from .payment import Payment, PaymentStatusEnum
