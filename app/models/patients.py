"""Patient model definition using SQLAlchemy Core."""

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    Table,
    Text,
    func,
)

from app.models.base import metadata

patients = Table(
    "patients",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("age", String(10), nullable=False),
    # Natural key for dedupe; never changed once assigned
    Column("phone", String(20), nullable=False, unique=True, index=True),
    Column("email", Text, nullable=True),
    Column("sex", String(20), nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)
