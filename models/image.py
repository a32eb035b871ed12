# models/image.py
import os
import uuid
from sqlalchemy import (
    Column, Text, TIMESTAMP, Integer, ForeignKey, Uuid, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow

DEFAULT_BUCKET = os.getenv("AZURE_BLOB_CONTAINER", "mygarage")

class Image(Base):
    __tablename__ = "images"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    # exactly one of vehicle_id / mod_id is set
    vehicle_id = Column(Uuid(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=True)
    mod_id = Column(Uuid(as_uuid=True), ForeignKey("mods.id", ondelete="CASCADE"), nullable=True)
    storage_bucket = Column(Text, nullable=False, default=DEFAULT_BUCKET)
    storage_path = Column(Text, nullable=False)           # e.g. 'vehicles/{vehicle_id}/{uuid}.jpg'
    caption = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "(vehicle_id is not null and mod_id is null) or (vehicle_id is null and mod_id is not null)",
            name="images_exactly_one_parent",
        ),
        CheckConstraint("trim(storage_path) <> ''", name="images_storage_path_not_blank"),
        Index("images_profile_id_idx", "profile_id"),
        Index("images_vehicle_sort_idx", "vehicle_id", "sort_order", "created_at"),
        Index("images_mod_sort_idx", "mod_id", "sort_order", "created_at"),
    )

    profile = relationship("Profile", back_populates="images")
    vehicle = relationship("Vehicle", back_populates="images")
    mod = relationship("Mod", back_populates="images")
