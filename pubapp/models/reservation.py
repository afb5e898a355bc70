from sqlalchemy import (
    Column, Integer, Enum, ForeignKey, Text, Time, Date, String, Numeric, DateTime, CheckConstraint, Index,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from pubapp.database import Base

RESERVATION_STATUSES = ("active", "completed", "cancelled")


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("party_size > 0", name="chk_reservations_party_size"),
        CheckConstraint("duration_hours = -1 OR duration_hours > 0", name="chk_reservations_duration"),
        Index("idx_reservations_table_date", "table_id", "reservation_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(Integer, ForeignKey("tables.id", ondelete="CASCADE", onupdate="CASCADE"), nullable=False)
    guest_name = Column(String(255), nullable=False, index=True)
    guest_phone = Column(String(20), index=True)
    party_size = Column(Integer, nullable=False)
    reservation_date = Column(Date, nullable=False, index=True)
    reservation_time = Column(Time, nullable=False)
    # Ore decimali (2.5 = 2h30); -1 = durata indefinita
    duration_hours = Column(Numeric(7, 2, asdecimal=False), nullable=False, default=2.0)
    notes = Column(Text)
    status = Column(Enum(*RESERVATION_STATUSES, name="reservation_status_enum"), nullable=False, default="active")
    created_by = Column(String(200))  # Dipendente che ha inserito la prenotazione
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 🔗 Relazioni ORM
    table = relationship("Table", back_populates="reservations")
    activity_logs = relationship(
        "ActivityLogEntry",
        back_populates="reservation",
        order_by="ActivityLogEntry.performed_at.desc()",
    )

    @property
    def is_indefinite(self) -> bool:
        from pubapp.utils.time_model import is_indefinite
        return is_indefinite(self.duration_hours)

    def to_dict(self) -> dict:
        from pubapp.utils.time_model import format_date, format_duration_display, format_time, normalize_duration
        return {
            "id": self.id,
            "table_id": self.table_id,
            "guest_name": self.guest_name,
            "guest_phone": self.guest_phone,
            "party_size": self.party_size,
            "reservation_date": format_date(self.reservation_date),
            "reservation_time": format_time(self.reservation_time),
            "duration_hours": normalize_duration(self.duration_hours),
            "duration_display": format_duration_display(self.duration_hours),
            "notes": self.notes,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<Reservation(id={self.id}, table_id={self.table_id}, "
            f"date='{self.reservation_date}', time='{self.reservation_time}', status='{self.status}')>"
        )
