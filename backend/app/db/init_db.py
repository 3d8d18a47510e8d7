"""Create all tables. Run on app startup."""
import logging

from app.db.base import Base
from app.db.session import engine
from app.models import patient, prescription, health_record, workflow_record, daily_task  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db():
    Base.metadata.create_all(bind=engine)
    logger.info(f"Tables ensured: {', '.join(sorted(Base.metadata.tables))}")
