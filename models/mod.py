import uuid
from sqlalchemy import (
    Column, Text, TIMESTAMP, Date, Integer, ForeignKey, Uuid, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow

class Mod(Base):
    __tablename__ = "mods"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    vehicle_id = Column(Uuid(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    category = Column(Text, nullable=True)
    cost_cents = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    installed_on = Column(Date, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("cost_cents is null or cost_cents >= 0", name="mods_cost_cents_non_negative"),
        Index("mods_vehicle_id_idx", "vehicle_id"),
        Index("mods_vehicle_sort_idx", "vehicle_id", "sort_order", "created_at"),
    )

    vehicle = relationship("Vehicle", back_populates="mods")
    images = relationship("Image", back_populates="mod", cascade="all", passive_deletes=True)
