"""Validation rule, data mapping and import configuration definitions."""

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.types import DateTime

from land_importer.db.base import Base, JSONType


class ValidationRule(Base):
    __tablename__ = "validation_rules"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    field = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    parameters = Column(JSONType, nullable=False)
    severity = Column(String(16), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class DataMapping(Base):
    __tablename__ = "data_mappings"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    source_field = Column(String(255), nullable=False)
    target_field = Column(String(255), nullable=False)
    transformation = Column(String(32), nullable=False)
    parameters = Column(JSONType, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ImportConfiguration(Base):
    """Single-row table; the payload mirrors the ImportConfiguration record."""

    __tablename__ = "import_configuration"

    id = Column(Integer, primary_key=True)
    payload = Column(JSONType, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
