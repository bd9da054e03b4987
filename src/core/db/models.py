import time
from datetime import datetime, timezone
from typing import Iterator, Optional

from pydantic import Field
from snowflake import SnowflakeGenerator
from sqlalchemy import text
from sqlalchemy.sql import func
from sqlmodel import Field as SQLModelField
from sqlmodel import SQLModel
from typing_extensions import Annotated

SnowflakeId = Annotated[int, Field(ge=0, le=(2**63 - 1))]


def next_snowflake(generator: Iterator[Optional[int]]) -> SnowflakeId:
    """Draw the next id, waiting out an exhausted millisecond sequence."""
    while (value := next(generator)) is None:
        time.sleep(0.001)
    return value


def new_id_generator(instance: int = 42) -> SnowflakeGenerator:
    return SnowflakeGenerator(instance)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC timestamp.

    Naive values are taken to be UTC already; stores without tz support
    (SQLite) hand them back that way.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimestampMixin(SQLModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime = SQLModelField(
        default=None,
        nullable=False,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP"), "index": True},
    )
    updated_at: datetime = SQLModelField(
        default=None,
        nullable=False,
        sa_column_kwargs={
            "server_default": text("CURRENT_TIMESTAMP"),
            "onupdate": func.now(),
        },
    )
