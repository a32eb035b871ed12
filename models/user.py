import uuid
from sqlalchemy import Column, Text, TIMESTAMP, Uuid
from sqlalchemy.orm import relationship

from .base import Base, utcnow

class User(Base):
    """Identity record. `id` is the durable principal every ownership check resolves to."""
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    profile = relationship("Profile", back_populates="user", uselist=False, passive_deletes=True)
