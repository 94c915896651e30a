"""User model."""
from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class User(Base):
    """A marketplace participant; the same account can post gigs and work them."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    completed_gigs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    wallet = relationship("Wallet", back_populates="user", uselist=False)
