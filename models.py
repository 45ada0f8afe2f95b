from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from database import Base  # ✅ Use the shared Base from database.py


# -------------------------------------------------------------------
# Analytics events (append-only)
# -------------------------------------------------------------------
class AnalyticsEventRow(Base):
    __tablename__ = "cms_analytics_events"

    # BIGSERIAL on Postgres; SQLite only autoincrements INTEGER primary keys
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    occurred_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    event_name = Column(Text, nullable=False)
    session_id = Column(Text, nullable=False)
    path = Column(Text, nullable=False)
    source = Column(Text, nullable=False)
    source_context = Column(Text, nullable=False)
    label = Column(Text, nullable=False)
    href = Column(Text, nullable=False)
    section = Column(Text, nullable=False)
    item_id = Column(Text, nullable=False)
    item_type = Column(Text, nullable=False)

    value = Column(Float, nullable=False, default=0)
    duration_ms = Column(Integer, nullable=False, default=0)
    meta = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=dict)
    is_bot = Column(Boolean, nullable=False, default=False)


# "most recent N" reads scan this index
Index("cms_analytics_events_occurred_at_idx", AnalyticsEventRow.occurred_at.desc())
