# stock_manager/services/base.py
import logging

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from stock_manager.exceptions import DatabaseError, UnavailableError

logger = logging.getLogger(__name__)

def is_connectivity_error(error: Exception) -> bool:
    """True when the driver reports a lost, locked or unreachable store."""
    if isinstance(error, (OperationalError, InterfaceError)):
        return True
    return isinstance(error, DBAPIError) and bool(error.connection_invalidated)

def translate_db_error(error: SQLAlchemyError, action: str):
    """Map a SQLAlchemy error to the Stock Manager error taxonomy."""
    if is_connectivity_error(error):
        return UnavailableError(
            f"Store unavailable while trying to {action}, please retry",
            details={'cause': str(error)}
        )
    return DatabaseError(f"Failed to {action}: {error}", details={'cause': str(error)})


class BaseService:
    """Holds the session shared by the service classes."""

    def __init__(self, session: Session):
        """Initialize the service.

        Args:
            session: Database session
        """
        self.session = session

    def _commit(self, action: str):
        """Commit the session, rolling back and translating failures."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error trying to {action}: {str(e)}")
            raise translate_db_error(e, action)
