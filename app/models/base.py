"""Columns shared by every persisted entity."""

import uuid

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import declared_attr

from app.database import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class EntityMixin:
    """Generated id, audit timestamps and an optimistic version counter.

    The version column is the mapper's ``version_id_col``: every ORM UPDATE is
    issued as ``... WHERE id = :id AND version = :expected`` and raises
    ``StaleDataError`` when another writer got there first.
    """

    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    @declared_attr.directive
    def __mapper_args__(cls) -> dict:
        return {"version_id_col": cls.version}
