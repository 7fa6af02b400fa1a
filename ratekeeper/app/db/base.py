"""Declarative base for the SQL bucket store."""

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base for bucket store tables, with async attribute loading."""

    metadata = MetaData(
        naming_convention={
            "ix": "idx_%(table_name)s_%(column_0_name)s",
            "pk": "pk_%(table_name)s",
        }
    )
