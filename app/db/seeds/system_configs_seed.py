from datetime import date

from sqlalchemy.orm import Session
from sqlalchemy import delete

from app.config.settings import settings
from app.db.models import SystemConfig
from app.utils.logging import get_logger

logger = get_logger()

OPEN_START = date(2000, 1, 1)
OPEN_END = date(9999, 12, 31)


def seed_system_configs(db_session: Session):
    """Seed workflow URL and default cc entries from the current settings"""

    db_session.execute(delete(SystemConfig))

    configs = [
        SystemConfig(
            system_type="PA_FLOW_URL",
            system_cd="DEFAULT",
            value_text=settings.WORKFLOW_URL or None,
            valid_from=OPEN_START,
            valid_to=OPEN_END,
        ),
        SystemConfig(
            system_type="EMAIL",
            system_cd="DEFAULT_CC",
            value_text=settings.DEFAULT_CC_EMAIL or None,
            valid_from=OPEN_START,
            valid_to=OPEN_END,
        ),
    ]

    db_session.add_all(configs)
    db_session.flush()
    logger.info(f"Seeded {len(configs)} system configs")
