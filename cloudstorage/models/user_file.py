"""
UserFile model: a user's named link to stored content.
Many links may reference one StoredFile.
"""
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cloudstorage.database import Base

if TYPE_CHECKING:
    from cloudstorage.models.user import User


class UserFile(Base):
    """(username, file_name) -> content hash, with display size and timestamps."""

    __tablename__ = "user_files"
    __table_args__ = (
        UniqueConstraint("username", "file_name", name="uq_user_files_username_file_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.username", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    file_hash: Mapped[str] = mapped_column(String(40), index=True, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    upload_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )
    last_update: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", back_populates="files")

    def __repr__(self) -> str:
        return f"<UserFile(username={self.username}, file_name={self.file_name})>"
