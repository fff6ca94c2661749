"""
Main seeding file for the reference data the batch jobs read.

Only templates and system configuration are seeded; master data
(applications, schedules, access mappings, employees) arrives from the
upstream systems.
"""

from typing import Optional

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.utils.logging import get_logger

from .notification_templates_seed import seed_notification_templates
from .system_configs_seed import seed_system_configs

logger = get_logger()


def seed_all_data(db_session: Optional[Session] = None):
    """Seed into ``db_session``, or into a fresh session that is closed afterwards."""
    owns_session = db_session is None
    if owns_session:
        db_session = SessionLocal()
    try:
        logger.info("Starting database seeding...")

        seed_notification_templates(db_session)
        seed_system_configs(db_session)

        db_session.commit()
        logger.info("Database seeding completed successfully!")
        return True

    except Exception as e:
        logger.error(f"Database seeding failed: {str(e)}")
        db_session.rollback()
        raise e
    finally:
        if owns_session:
            db_session.close()
