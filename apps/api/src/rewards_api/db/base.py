from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models with automatic table naming."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


def utcnow() -> datetime:
    """Timezone-aware UTC now, used for client-side column defaults."""

    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Normalise naive timestamps (SQLite drops tzinfo) to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Import models to ensure metadata registration for Alembic
try:  # pragma: no cover - import side effects only
    import rewards_api.models  # noqa: F401,WPS433
except ImportError:  # pragma: no cover - partial imports during migrations
    pass
