"""
StoredFile model: one row per distinct content hash.

The bytes live either in local staging (``file_location`` under TEMP_FILE_PATH) or in
object storage (``file_location`` is the bucket key) once the transfer worker has
migrated them.
"""
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from cloudstorage.database import Base


class StoredFile(Base):
    """Deduplicated content record, created once per hash by the first uploader."""

    __tablename__ = "stored_files"

    file_hash: Mapped[str] = mapped_column(String(40), primary_key=True)
    # 최초 업로더가 지정한 이름
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_location: Mapped[str] = mapped_column(String(1024), nullable=False)
    # 전송 메시지가 아직 브로커에 등록되지 않음
    transfer_pending: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<StoredFile(file_hash={self.file_hash}, location={self.file_location})>"
