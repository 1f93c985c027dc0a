from functools import wraps
from flask import current_app, jsonify
from flask_login import current_user

def has_role_system():
    """
    Returns True when role checks are switched on (ROLE_SYSTEM_ENABLED).
    Deployments without roles leave it off and every authenticated user may manage their own billing.
    """
    return bool(current_app.config.get('ROLE_SYSTEM_ENABLED', False))

def role_required(*roles):
    """
    Decorator to restrict a route to users holding one of `roles`.
    If no roles are given, the configured BILLING_ROLES apply.
    Does nothing while the role system is disabled.
    Should be placed after @login_required so current_user is authenticated.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not has_role_system():
                return f(*args, **kwargs)

            allowed = roles or tuple(current_app.config.get('BILLING_ROLES', ()))
            if not current_user.is_authenticated or not current_user.has_role(*allowed):
                current_app.logger.warning(f"User {getattr(current_user, 'id', None)} with role {getattr(current_user, 'role', None)} denied access to {f.__name__}; requires one of {allowed}.")
                return jsonify({'error': {'code': 'FORBIDDEN', 'message': 'You do not have access to billing.', 'details': {'roles': list(allowed)}}}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator
