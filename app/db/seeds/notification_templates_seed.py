from sqlalchemy.orm import Session
from sqlalchemy import delete

from app.db.models import NotificationTemplate, TemplateChannel
from app.services.notifications.reminder import (
    ITEM_CODE_CREATED,
    ITEM_CODE_COMPLETED,
    REMINDER_CODES,
)
from app.utils.logging import get_logger

logger = get_logger()

LOCALE = "en-US"


def _template_pair(item_code: str, subject: str, body: str):
    return [
        NotificationTemplate(
            item_code=item_code,
            locale=LOCALE,
            channel=TemplateChannel.EMAIL,
            subject_tpl=subject,
            body_tpl=body,
            is_active=True,
        ),
        NotificationTemplate(
            item_code=item_code,
            locale=LOCALE,
            channel=TemplateChannel.TEAMS,
            subject_tpl=subject,
            body_tpl=body,
            is_active=True,
        ),
    ]


def seed_notification_templates(db_session: Session):
    """Seed EMAIL and TEAMS templates for every UAR item code - clear existing and add new"""

    db_session.execute(delete(NotificationTemplate))

    templates = []
    templates += _template_pair(
        ITEM_CODE_CREATED,
        "User Access Review: new tasks waiting for your review",
        "UAR_CREATED_BODY",
    )
    templates += _template_pair(
        ITEM_CODE_COMPLETED,
        "User Access Review: review completed",
        "UAR_COMPLETED_BODY",
    )
    for day, code in enumerate(REMINDER_CODES, start=1):
        templates += _template_pair(
            code,
            f"User Access Review: reminder {day}, tasks still pending",
            f"{code}_BODY",
        )

    db_session.add_all(templates)
    db_session.flush()
    logger.info(f"Seeded {len(templates)} notification templates")
