"""
Modello per i tavoli fisici prenotabili
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from pubapp.database import Base


class Table(Base):
    """Tavolo fisico di una sala, con la sua capienza massima"""
    __tablename__ = "tables"
    __table_args__ = (
        UniqueConstraint("room_id", "table_number", name="uq_tables_room_number"),
        CheckConstraint("max_capacity > 0", name="chk_tables_capacity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="CASCADE", onupdate="CASCADE"), nullable=False, index=True)
    table_number = Column(String(10), nullable=False)  # A1, A2, B1...
    max_capacity = Column(Integer, nullable=False, default=4)
    is_active = Column(Boolean, default=True, nullable=False)  # Se il tavolo è disponibile per prenotazioni
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 🔗 Relazioni
    room = relationship("Room", back_populates="tables")
    reservations = relationship("Reservation", back_populates="table")

    def to_dict(self, with_room: bool = False) -> dict:
        data = {
            "id": self.id,
            "room_id": self.room_id,
            "table_number": self.table_number,
            "max_capacity": self.max_capacity,
            "is_active": self.is_active,
        }
        if with_room and self.room:
            data["room_name"] = self.room.name
            data["room_description"] = self.room.description
        return data

    def __repr__(self):
        return f"<Table(id={self.id}, room_id={self.room_id}, numero='{self.table_number}')>"
