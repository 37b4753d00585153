from models.base_model import Base, BaseModel
from sqlalchemy import Column, String, JSON
from sqlalchemy.orm import relationship


class User(BaseModel, Base):
    """Credential store record. Owned by the host application, referenced by tokens."""
    __tablename__ = "users"
    __private__ = ("password_hash",)

    name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    roles = Column(JSON, nullable=True, default=lambda: ["user"])

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        passive_deletes=True,
    )

    @property
    def password(self):
        raise AttributeError("Password: Write-only field")
