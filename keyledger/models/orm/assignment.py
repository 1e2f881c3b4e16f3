from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, text

from .base import Base, utcnow

OPEN_ASSIGNMENT_INDEX = "uq_key_assignments_open_key"


class AssignmentORM(Base):
    __tablename__ = "key_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)

    key_id = Column(Integer, ForeignKey("keys.id"), nullable=False)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=False)
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    # NULL while the key is out with its holder
    returned_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # At most one open assignment per key, enforced by the store itself.
        Index(
            OPEN_ASSIGNMENT_INDEX,
            "key_id",
            unique=True,
            sqlite_where=text("returned_at IS NULL"),
            postgresql_where=text("returned_at IS NULL"),
        ),
        Index("ix_key_assignments_key_history", "key_id", "assigned_at", "id"),
    )
