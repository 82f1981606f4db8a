from sqlalchemy.orm.exc import StaleDataError
from washgate.extensions import db
from washgate.errors import ConflictError


def load_for_update(model, ident):
    """Re-read a row, overwriting whatever the identity map holds, and lock it where the database can."""
    return db.session.get(model, ident, populate_existing=True, with_for_update=True)


def commit():
    """Commit the unit of work; a row changed underneath us becomes a conflict."""
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError("The record was changed by another request. Please retry.", code='STALE_WRITE')
