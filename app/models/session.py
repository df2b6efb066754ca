from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.database import Base


class SessionEntry(Base):
    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    # Set on sign-out; a closed session never authenticates again.
    revoked_at = Column(DateTime(timezone=True), nullable=True)
