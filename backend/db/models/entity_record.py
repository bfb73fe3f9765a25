"""EntityRecord model — generic storage for CRM entities.

The CRM's own storage layer owns students, applications, tasks and the rest.
The engine only needs typed get/list/create/update, so a single table keyed
by ``entity_type`` with a JSON payload is enough to back that contract.
"""

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class EntityRecord(BaseModel):
    """A CRM record of some entity type.

    Attributes:
        id: Unique identifier (UUID string)
        entity_type: e.g. student_profile, application, task
        data: Field values of the record
    """

    __tablename__ = "entity_records"

    entity_type: Mapped[str] = mapped_column(nullable=False, index=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    def to_record(self) -> dict:
        """Flatten into the plain dict handlers and guards work with."""
        return {
            **(self.data or {}),
            "id": self.id,
            "created_date": self.created_at.isoformat() if self.created_at else None,
        }
