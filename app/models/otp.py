from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from app.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False)
    purpose = Column(String(32), nullable=False)
    code = Column(String(10), nullable=False)
    pending_payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_otp_email_purpose", "email", "purpose"),
        Index("ix_otp_created_at", "created_at"),
        # Ids of consumed or replaced records must never come back.
        {"sqlite_autoincrement": True},
    )
