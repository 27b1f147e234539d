from sqlalchemy import BigInteger, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# SQLite only autoincrements INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class Intent(str, enum.Enum):
    """Trade intent of a listing"""
    SELL = "sell"
    WANT = "want"
    UNKNOWN = "unknown"


class ListingStatus(str, enum.Enum):
    """Listing lifecycle status"""
    ACTIVE = "active"
    PENDING_REVIEW = "pending_review"
    EXPIRED = "expired"
    SOLD = "sold"
    DELETED = "deleted"


class ReviewStatus(str, enum.Enum):
    """Review queue item status; pending is the only non-terminal state"""
    PENDING = "pending"
    RESOLVED = "resolved"
    SKIPPED = "skipped"


class ReviewReason(str, enum.Enum):
    """Why an extraction was routed to a human"""
    LOW_CONFIDENCE = "low_confidence"
    UNKNOWN_INTENT = "unknown_intent"
    NO_ITEMS = "no_items"
    BELOW_THRESHOLD = "below_threshold"


class JargonSource(str, enum.Enum):
    """Origin of a jargon entry"""
    LLM = "llm"
    HUMAN = "human"
    SEED = "seed"


class NotifyChannel(str, enum.Enum):
    """Delivery channel for notification rules"""
    WEBHOOK = "webhook"
    LOG = "log"
