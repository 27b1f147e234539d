from sqlalchemy import Column, String, Text, Float, Boolean, DateTime, Enum
from datetime import datetime
from models.base import Base, BigIntPK, JSONType, Intent, NotifyChannel


class NotificationRule(Base):
    """
    Natural-language alert rule with its parsed, machine-checkable criteria.

    Every parsed_* field is optional; an unset field matches any listing.
    """
    __tablename__ = "notification_rules"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    owner = Column(String(255), nullable=False, index=True)
    rule_text = Column(Text, nullable=False)

    parsed_intent = Column(Enum(Intent, name="rule_intent"), nullable=True)
    parsed_keywords = Column(JSONType, nullable=True)
    parsed_category_ids = Column(JSONType, nullable=True)
    parsed_price_min = Column(Float, nullable=True)
    parsed_price_max = Column(Float, nullable=True)

    notify_channel = Column(Enum(NotifyChannel, name="notify_channel"), nullable=False, default=NotifyChannel.LOG)
    notify_target = Column(String(500), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_triggered = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
