# models/email_verification.py
import uuid
from sqlalchemy import Column, Text, TIMESTAMP, String, Index, Uuid

from .base import Base, utcnow

class EmailVerification(Base):
    __tablename__ = "email_verifications"

    id         = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email      = Column(Text, nullable=False)
    pin_hash   = Column(Text, nullable=False)  # sha256 of the 6-digit code
    purpose    = Column(String(32), nullable=False, default="sign_in")
    expires_at = Column(TIMESTAMP, nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_email_verifications_email_purpose", "email", "purpose"),
    )
