#!/usr/bin/env python3
"""
Shared SQLAlchemy base and mixin for the auth API models.

- UUID primary key (String(36)) with defaults
- created_at / updated_at timestamps (naive UTC, set by the application)
- to_dict() that formats timestamps and removes SA internals

Persistence goes through models.storage (DBStorage); models never commit
on their own, the services that own a transaction do.
"""

from __future__ import annotations

from datetime import datetime
import uuid

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import declarative_base

from utils.security import utcnow

TIME_FMT = "%Y-%m-%dT%H:%M:%S.%f"

# Declarative base for all models
Base = declarative_base()


def _uuid_str() -> str:
    """Return a canonical UUIDv4 string (36 chars, with hyphens)."""
    return str(uuid.uuid4())


class BaseModel:
    """
    Base mixin for all persistent models: id, created_at, updated_at and to_dict().
    """

    id = Column(String(36), primary_key=True, default=_uuid_str, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # fields never rendered by to_dict()
    __private__ = ()

    def __init__(self, *args, **kwargs):
        """
        Allow attribute initialization via kwargs without requiring a session here.
        """
        for key, value in kwargs.items():
            if key != "__class__":
                setattr(self, key, value)
        if getattr(self, "id", None) is None:
            self.id = _uuid_str()
        if getattr(self, "created_at", None) is None:
            self.created_at = utcnow()
        if getattr(self, "updated_at", None) is None:
            self.updated_at = self.created_at

    def __str__(self) -> str:
        """Human-friendly representation including id and fields."""
        return f"[{self.__class__.__name__}] ({self.id}) {self.to_dict()}"

    def to_dict(self) -> dict:
        """
        Return a dictionary of fields suitable for logs and API responses:
        - Formats datetime values to TIME_FMT
        - Removes SQLAlchemy internal state and private fields
        """
        d = {
            k: v
            for k, v in self.__dict__.items()
            if k != "_sa_instance_state" and k not in self.__private__
        }
        for key, value in d.items():
            if isinstance(value, datetime):
                d[key] = value.strftime(TIME_FMT)
        d["__class__"] = self.__class__.__name__
        return d
