import logging

from database import configured_engine
from models import Base

logging.basicConfig(level=logging.INFO)

engine = configured_engine()
if engine is None:
    raise RuntimeError("DATABASE_URL environment variable is not set")

# Creates the analytics events table and its occurred_at index if missing
Base.metadata.create_all(bind=engine)

logging.info("✅ Database schema created.")
