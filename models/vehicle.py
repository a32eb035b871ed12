import uuid
from sqlalchemy import (
    Column, Text, TIMESTAMP, Boolean, Integer, ForeignKey, Uuid, Index,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow

class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    year = Column(Integer, nullable=True)
    make = Column(Text, nullable=True)
    model = Column(Text, nullable=True)
    trim = Column(Text, nullable=True)
    hero_image_path = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=True)
    # siblings are ordered by (sort_order, created_at, id)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("vehicles_profile_id_idx", "profile_id"),
        Index("vehicles_profile_sort_idx", "profile_id", "sort_order", "created_at"),
    )

    profile = relationship("Profile", back_populates="vehicles")
    mods = relationship("Mod", back_populates="vehicle", cascade="all", passive_deletes=True)
    images = relationship("Image", back_populates="vehicle", cascade="all", passive_deletes=True)
