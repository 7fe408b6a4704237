import abc
import os
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

from app.core.config import settings

class StorageProvider(abc.ABC):
    """
    Abstract base class for headshot image storage.
    """

    @abc.abstractmethod
    def save_upload(self, file_obj: BinaryIO, filename: str) -> str:
        """
        Save an uploaded file and return a reference path/ID.
        """
        pass

    @abc.abstractmethod
    def get_absolute_path(self, file_ref: str) -> str:
        """
        Get absolute local path for rendering.
        """
        pass

    @abc.abstractmethod
    def exists(self, file_ref: str) -> bool:
        pass

    @abc.abstractmethod
    def delete(self, file_ref: str) -> bool:
        """
        Delete the file.
        """
        pass

class LocalStorageProvider(StorageProvider):
    """
    Stores files on the local filesystem under UPLOAD_DIR.
    Suitable for development or single-server deployment.
    """
    def __init__(self, base_dir: str | None = None):
        self.base_dir = Path(base_dir or settings.UPLOAD_DIR)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_upload(self, file_obj: BinaryIO, filename: str) -> str:
        # Create a unique filename to prevent collisions
        ext = Path(filename).suffix.lower()
        unique_name = f"headshot-{uuid.uuid4().hex}{ext}"
        target_path = self.base_dir / unique_name

        with open(target_path, "wb") as buffer:
            shutil.copyfileobj(file_obj, buffer)

        # Refs are relative to base_dir so records survive a moved upload directory
        return unique_name

    def _resolve(self, file_ref: str) -> Path:
        path = (self.base_dir / file_ref).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise ValueError(f"Storage reference escapes upload directory: {file_ref}")
        return path

    def get_absolute_path(self, file_ref: str) -> str:
        return str(self._resolve(file_ref))

    def exists(self, file_ref: str) -> bool:
        try:
            return self._resolve(file_ref).is_file()
        except ValueError:
            return False

    def delete(self, file_ref: str) -> bool:
        try:
            os.remove(self._resolve(file_ref))
            return True
        except (FileNotFoundError, ValueError):
            return False

# ─── Factory ─────────────────────────────────────────────────────────────────

def get_storage_provider() -> StorageProvider:
    return LocalStorageProvider()
