"""Time utilities. All datetimes are timezone-aware UTC."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC datetime for created_at/updated_at and task timestamps."""
    return datetime.now(timezone.utc)
