"""Unit-of-work helpers shared by the assignment and closure services."""
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from utils.errors import GrievanceError, NotFoundError


@contextmanager
def atomic(operation: str, **context):
    """Commit everything written inside the block, or nothing.

    Domain errors roll back quietly; database errors are logged with the
    operation name before they propagate.
    """
    try:
        yield db.session
        db.session.commit()
    except GrievanceError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(f"{operation} failed; transaction rolled back", extra=context)
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"{operation} aborted; transaction rolled back", extra=context)
        raise


def lock_for_update(model, pk: str, resource: str | None = None):
    """Load one row with ``SELECT ... FOR UPDATE`` where the backend supports it.

    The row is re-read under the lock, overwriting any copy already held in
    the session.
    """
    instance = model.query.filter(model.id == pk).with_for_update().populate_existing().first() if pk else None
    if instance is None:
        raise NotFoundError(resource or model.__name__)
    return instance
