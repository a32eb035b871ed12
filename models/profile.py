from sqlalchemy import (
    Column, Text, TIMESTAMP, Boolean, ForeignKey, Uuid, CheckConstraint, Index, func,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow

class Profile(Base):
    __tablename__ = "profiles"

    # 1:1 with users; NULL username means the profile is unpublished
    id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    username = Column(Text, nullable=True)
    display_name = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    avatar_path = Column(Text, nullable=True)
    is_pro = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("username is null or trim(username) <> ''", name="profiles_username_not_blank"),
        CheckConstraint("username is null or username = lower(username)", name="profiles_username_lowercase"),
    )

    user = relationship("User", back_populates="profile")
    vehicles = relationship("Vehicle", back_populates="profile", cascade="all", passive_deletes=True)
    images = relationship("Image", back_populates="profile", cascade="all", passive_deletes=True)

    @property
    def is_published(self) -> bool:
        return self.username is not None


Index(
    "profiles_username_unique_ci_idx",
    func.lower(Profile.__table__.c.username),
    unique=True,
    postgresql_where=Profile.__table__.c.username.isnot(None),
    sqlite_where=Profile.__table__.c.username.isnot(None),
)
