"""
RefreshToken model: one row per issued refresh token.
Fields:
- token_hash: SHA-256 of the opaque secret (the secret itself is never stored)
- user_id (String(36)) - FK to users.id
- expires_at: absolute expiry, never extended
- revoked / revoked_at: once revoked a row never becomes valid again
- user_agent / ip_address of the request that obtained the token
Rows are kept after revocation or expiry for auditing.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from models.base_model import BaseModel, Base


class RefreshToken(BaseModel, Base):
    __tablename__ = "refresh_tokens"
    __private__ = ("token_hash",)

    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    user_agent = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index("ix_refresh_tokens_user_revoked", "user_id", "revoked"),
    )

    def is_expired(self, now) -> bool:
        return now >= self.expires_at

    def __repr__(self):
        return f"<RefreshToken id={self.id} user={self.user_id} revoked={self.revoked}>"
