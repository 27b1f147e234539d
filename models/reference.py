"""
Curated reference vocabularies used to normalize extracted listings.
"""

from sqlalchemy import Column, String, BigInteger, Integer, Boolean, ForeignKey, DateTime
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class Category(Base):
    __tablename__ = "categories"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False, unique=True)
    parent_id = Column(BigInteger, ForeignKey("categories.id"), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Manufacturer(Base):
    __tablename__ = "manufacturers"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False, unique=True)
    aliases = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Unit(Base):
    __tablename__ = "units"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    abbreviation = Column(String(20), nullable=False, unique=True)


class Condition(Base):
    __tablename__ = "conditions"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    abbreviation = Column(String(20), nullable=True)
