from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import Field

from app.schemas.camel_base_model import CamelCaseBaseModel

# Fields a UAR PIC record must carry before it may enter uar_pics
REQUIRED_PIC_FIELDS: Tuple[str, ...] = (
    "pic_name",
    "division_id",
    "mail",
    "created_by",
    "created_dt",
)


class UarPicRecord(CamelCaseBaseModel):
    """
    A division PIC as reported by one upstream source.

    Every field is optional on purpose: sources are heterogeneous and the
    create-only sync decides which records are complete enough to keep.
    """

    id: Optional[int] = Field(default=None, description="Identity of the PIC across sources")
    pic_name: Optional[str] = Field(default=None, max_length=30)
    division_id: Optional[int] = None
    mail: Optional[str] = Field(default=None, max_length=50)
    created_by: Optional[str] = Field(default=None, max_length=20)
    created_dt: Optional[datetime] = None

    def missing_required_fields(self) -> List[str]:
        return [name for name in REQUIRED_PIC_FIELDS if getattr(self, name) is None]
