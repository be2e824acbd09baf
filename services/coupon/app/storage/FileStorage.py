"""
QR image storage.
Coupon QR codes are written to disk as {file_id}.png; the file id is kept on the coupon.
"""
import logging
import uuid
from pathlib import Path

from services.coupon.app.db.connection import settings

logger = logging.getLogger(__name__)

QR_EXTENSION = "png"


class FileStorage:
    def __init__(self, base_path: str | None = None):
        """
        Args:
            base_path: storage root (defaults to QR_STORAGE_PATH)
        """
        self.base_path = Path(base_path or settings.QR_STORAGE_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, file_id: str) -> Path:
        # file ids are uuids; anything else could escape base_path
        return self.base_path / f"{uuid.UUID(file_id)}.{QR_EXTENSION}"

    def save_file(self, content: bytes) -> tuple[str, Path]:
        """
        Store a PNG and return (file_id, file_path).
        """
        file_id = str(uuid.uuid4())
        file_path = self._path(file_id)
        file_path.write_bytes(content)
        return file_id, file_path

    def get_file_path(self, file_id: str) -> Path | None:
        try:
            file_path = self._path(file_id)
        except ValueError:
            return None
        return file_path if file_path.exists() else None

    def read_file(self, file_id: str) -> bytes | None:
        file_path = self.get_file_path(file_id)
        if file_path is None:
            return None
        return file_path.read_bytes()

    def delete_file(self, file_id: str) -> bool:
        file_path = self.get_file_path(file_id)
        if file_path is None:
            return False
        try:
            file_path.unlink()
            return True
        except OSError as e:
            logger.error("[Storage] failed to delete %s: %s", file_path, e)
            return False

    def file_exists(self, file_id: str) -> bool:
        return self.get_file_path(file_id) is not None
