from sqlalchemy import Column, String, Text, Integer, Float, Boolean, DateTime, Enum, UniqueConstraint, Index
from datetime import datetime
from models.base import Base, BigIntPK, JargonSource


class JargonEntry(Base):
    """
    Trade acronym and its expansion.

    Unverified rows are discovered by the pipeline; only verified rows are
    fed back into extraction prompts.
    """
    __tablename__ = "jargon_dictionary"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    acronym = Column(String(50), nullable=False)
    expansion = Column(String(255), nullable=False)
    industry = Column(String(100), nullable=True)
    context_example = Column(Text, nullable=True)

    source = Column(Enum(JargonSource, name="jargon_source"), nullable=False, default=JargonSource.LLM)
    confidence = Column(Float, nullable=False, default=0.5)
    usage_count = Column(Integer, nullable=False, default=1)
    verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("acronym", "expansion", name="uq_jargon_acronym_expansion"),
        Index("idx_jargon_verified", "verified"),
    )
