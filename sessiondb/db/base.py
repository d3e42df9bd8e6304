from sqlalchemy import MetaData

# Import SQLAlchemy 2.0 features with type ignores for compatibility with mypy stubs
from sqlalchemy.orm import (
    DeclarativeBase,  # type: ignore[attr-defined]
    registry,  # type: ignore
)

# Define naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)
mapper_registry = registry(metadata=metadata)


class Base(DeclarativeBase):
    """Base class for all database models."""

    # Use the mapper registry
    registry = mapper_registry
    metadata = metadata
