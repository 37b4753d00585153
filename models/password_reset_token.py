"""
PasswordResetToken model: single-use, time-boxed password reset secrets.
`used` flips false -> true exactly once, in the same transaction as the
password change it authorizes.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index

from models.base_model import BaseModel, Base


class PasswordResetToken(BaseModel, Base):
    __tablename__ = "password_reset_tokens"
    __private__ = ("token_hash",)

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_password_reset_tokens_user_id", "user_id"),
    )

    def __repr__(self):
        return f"<PasswordResetToken id={self.id} user={self.user_id} used={self.used}>"
