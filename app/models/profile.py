from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedUUIDModel


class Profile(TimestampedUUIDModel):
    __tablename__ = "profiles"
    __table_args__ = (UniqueConstraint("username", name="uq_profiles_username"),)

    user_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    username: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")  # user, admin
