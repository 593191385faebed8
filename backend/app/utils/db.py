"""Database query utility functions."""
from typing import Optional, TypeVar, Type
from uuid import UUID
from sqlalchemy.orm import Session

from app.utils.exceptions import NotFoundError

T = TypeVar("T")


def parse_uuid(id_value: str | UUID, resource: str = "Resource") -> UUID:
    """
    Parse an identifier into a UUID.

    Malformed identifiers reference nothing, so they surface as NotFoundError
    rather than a separate validation failure.
    """
    if isinstance(id_value, UUID):
        return id_value
    try:
        return UUID(str(id_value))
    except ValueError:
        raise NotFoundError(f"{resource} not found: {id_value}")


def get_by_id(
    db: Session,
    model: Type[T],
    id_value: str | UUID,
    error_message: Optional[str] = None,
) -> T:
    """
    Get a model instance by ID.

    Args:
        db: Database session
        model: SQLAlchemy model class
        id_value: ID value (UUID string or UUID object)
        error_message: Custom error message if not found

    Returns:
        Model instance

    Raises:
        NotFoundError: If the id is malformed or no row matches
    """
    message = error_message or f"{model.__name__} not found: {id_value}"
    try:
        uuid_value = parse_uuid(id_value, model.__name__)
    except NotFoundError:
        raise NotFoundError(message)

    instance = db.get(model, uuid_value)
    if not instance:
        raise NotFoundError(message)
    return instance
