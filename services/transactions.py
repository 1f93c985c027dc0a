from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import User
from services.exceptions import BillingError, NotFoundError, TransactionFailure


@contextmanager
def atomic(operation, user_id):
    """
    Runs a block of billing writes as one all-or-nothing transaction.

    Commits when the block finishes. Any exception rolls the session back:
    billing errors raised inside the block propagate unchanged, persistence
    errors are logged and re-raised as TransactionFailure.

    Args:
        operation (str): Short name of the operation, used in logs and messages.
        user_id (int): The user the operation acts for, used in logs.
    """
    try:
        yield db.session
        db.session.commit()
    except BillingError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Rolled back {operation} for user {user_id}: {e}", exc_info=True)
        raise TransactionFailure(operation) from e
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"Unexpected error during {operation} for user {user_id}; transaction rolled back.", exc_info=True)
        raise


def lock_user(user_id):
    """
    Locks the user's row until the surrounding transaction ends.

    Every billing write takes this lock first, so a user's writes are serialised
    even when there are no card or subscription rows to lock yet.

    Raises:
        NotFoundError: If the user does not exist.
    """
    user = db.session.query(User).filter_by(id=user_id).with_for_update().first()
    if user is None:
        raise NotFoundError('User', user_id)
    return user
