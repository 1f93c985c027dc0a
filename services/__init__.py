"""
Billing core: plan catalog, payment methods, subscriptions, proration,
invoice/payment ledger and usage meter.

Every public operation takes an explicit user id and returns model instances
or plain dicts; failures are raised as the typed errors in
services.exceptions.
"""
