from sqlalchemy import Column, Integer, String, Enum, DateTime, ForeignKey, JSON, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from pubapp.database import Base

ACTION_TYPES = ("updated", "cancelled")


class ActivityLogEntry(Base):
    """Voce di audit immutabile: modifiche e cancellazioni di una prenotazione"""
    __tablename__ = "reservation_activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(
        Integer,
        ForeignKey("reservations.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    action_type = Column(Enum(*ACTION_TYPES, name="activity_action_enum"), nullable=False, index=True)
    performed_by = Column(String(200))
    performed_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
    field_changes = Column(JSON)  # {"campo": {"old": ..., "new": ...}}
    reservation_snapshot = Column(JSON, nullable=False)
    notes = Column(Text)
    ip_address = Column(String(45))
    user_agent = Column(String(255))

    # 🔗 Relazioni ORM
    reservation = relationship("Reservation", back_populates="activity_logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reservation_id": self.reservation_id,
            "action_type": self.action_type,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
            "field_changes": self.field_changes,
            "reservation_snapshot": self.reservation_snapshot,
            "notes": self.notes,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

    def __repr__(self):
        return f"<ActivityLogEntry(id={self.id}, reservation_id={self.reservation_id}, azione='{self.action_type}')>"
