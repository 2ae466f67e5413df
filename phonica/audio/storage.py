"""Temporary and permanent storage for uploaded audio.

Uploads land in ``{temp_upload_dir}/{temp_file_id}_{original_name}`` and
stay there until a material claims them with :meth:`persist_temp_file`,
which moves the file to ``{upload_dir}/{final_name}``. A temp id is single
use: once persisted (or swept as expired) it no longer verifies.

Materials store the public path ``{upload_url_prefix}/{final_name}``;
:meth:`resolve_public_path` maps it back to disk.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
import uuid
from pathlib import Path

from phonica.audio.metadata import AudioMetadata, extract_metadata
from phonica.errors import NotFoundError, PersistenceError, UploadError
from phonica.settings import Settings, settings

logger = logging.getLogger(__name__)

TEMP_FILE_NOT_FOUND = "Uploaded file not found. Please upload it again."

_TEMP_ID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def safe_file_name(name: str | None) -> str:
    """Strip directory components and characters unsafe in file names."""
    base = Path(name or "").name
    base = re.sub(r"[^\w.\- ]+", "_", base).strip()
    return base or "upload.bin"


class AudioMetadataService:
    """Stores uploads, analyzes them and moves them into the material store."""

    def __init__(
        self,
        temp_dir: Path | str,
        upload_dir: Path | str,
        url_prefix: str = "/uploads/materials",
        temp_file_ttl_seconds: int = 3600,
        file_name_prefix: str = "",
    ) -> None:
        self.temp_dir = Path(temp_dir)
        self.upload_dir = Path(upload_dir)
        self.url_prefix = "/" + url_prefix.strip("/")
        self.temp_file_ttl_seconds = temp_file_ttl_seconds
        self.file_name_prefix = file_name_prefix

    @classmethod
    def from_settings(cls, config: Settings) -> AudioMetadataService:
        return cls(
            temp_dir=config.temp_upload_dir,
            upload_dir=config.upload_dir,
            url_prefix=config.upload_url_prefix,
            temp_file_ttl_seconds=config.temp_file_ttl_seconds,
            file_name_prefix=config.test_file_prefix,
        )

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def build_permanent_name(self, original_name: str | None) -> str:
        """Return ``{prefix}{uuid}_{original_name}``: unique but traceable."""
        return f"{self.file_name_prefix}{uuid.uuid4()}_{safe_file_name(original_name)}"

    def public_path(self, file_name: str) -> str:
        return f"{self.url_prefix}/{file_name}"

    def resolve_public_path(self, public_path: str) -> Path | None:
        """Map a stored ``file_path`` back to disk, or None if it escapes the store."""
        name = public_path
        if name.startswith(self.url_prefix + "/"):
            name = name[len(self.url_prefix) + 1 :]
        root = self.upload_dir.resolve()
        candidate = (root / name).resolve()
        if not candidate.is_relative_to(root):
            logger.warning("Path traversal blocked: %s resolves outside %s", public_path, root)
            return None
        return candidate

    # ------------------------------------------------------------------
    # Temp store
    # ------------------------------------------------------------------

    def _find_temp_file(self, temp_file_id: str) -> Path | None:
        if not _TEMP_ID_PATTERN.match(temp_file_id or ""):
            return None
        if not self.temp_dir.is_dir():
            return None
        for candidate in self.temp_dir.glob(f"{temp_file_id}_*"):
            if candidate.is_file():
                return candidate
        return None

    async def save_temp_file(self, file_name: str | None, content: bytes) -> str:
        """Write an upload to the temp store and return its temp file id.

        Raises:
            UploadError: If the temp directory or file cannot be written.
        """
        temp_file_id = str(uuid.uuid4())
        target = self.temp_dir / f"{temp_file_id}_{safe_file_name(file_name)}"
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            logger.error("Failed to write temp upload %s: %s", target, exc)
            raise UploadError("Failed to upload file") from exc

        logger.info("Stored temp upload %s (%d bytes)", target.name, len(content))
        return temp_file_id

    async def verify_temp_file(self, temp_file_id: str) -> bool:
        """True while the temp file exists (not yet persisted or swept)."""
        return self._find_temp_file(temp_file_id) is not None

    async def analyze_audio(self, temp_file_id: str) -> AudioMetadata:
        """Extract metadata from a temp upload.

        Raises:
            NotFoundError: If the temp file is gone.
            AnalysisError: If the file is not a supported audio container.
        """
        temp_path = self._find_temp_file(temp_file_id)
        if temp_path is None:
            raise NotFoundError("Temporary file not found", code="TEMP_FILE_NOT_FOUND")
        return await self.analyze_file(temp_path)

    async def analyze_file(self, file_path: Path) -> AudioMetadata:
        return await asyncio.to_thread(extract_metadata, file_path)

    async def persist_temp_file(self, temp_file_id: str, final_name: str) -> str:
        """Move a temp upload into the permanent store.

        Args:
            temp_file_id: Id returned by :meth:`save_temp_file`.
            final_name: File name inside the permanent store, usually from
                :meth:`build_permanent_name`.

        Returns:
            The public path to store on the material.

        Raises:
            PersistenceError: If the temp file is gone (including a second
                persist of the same id) or the store is not writable.
        """
        temp_path = self._find_temp_file(temp_file_id)
        if temp_path is None:
            raise PersistenceError(TEMP_FILE_NOT_FOUND, code="TEMP_FILE_NOT_FOUND")

        target = self.upload_dir / safe_file_name(final_name)
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(temp_path), str(target))
        except FileNotFoundError as exc:
            # Swept between lookup and move
            raise PersistenceError(TEMP_FILE_NOT_FOUND, code="TEMP_FILE_NOT_FOUND") from exc
        except OSError as exc:
            logger.error("Failed to persist %s to %s: %s", temp_path, target, exc)
            raise PersistenceError("Failed to save file. Please try again.") from exc

        logger.info("Persisted temp upload %s -> %s", temp_file_id, target.name)
        return self.public_path(target.name)

    async def cleanup_temp_files(self, now: float | None = None) -> list[str]:
        """Delete temp uploads older than the TTL and return their names."""
        if not self.temp_dir.is_dir():
            return []

        now = time.time() if now is None else now
        removed: list[str] = []
        for path in self.temp_dir.iterdir():
            if not path.is_file():
                continue
            try:
                if now - path.stat().st_mtime > self.temp_file_ttl_seconds:
                    path.unlink()
                    removed.append(path.name)
                    logger.info("Deleted expired temp file: %s", path.name)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.error("Failed to delete temp file %s: %s", path, exc)
        return removed

    # ------------------------------------------------------------------
    # Permanent store
    # ------------------------------------------------------------------

    async def save_upload(self, file_name: str | None, content: bytes) -> str:
        """Write an upload straight into the permanent store.

        Returns:
            The public path to store on the material.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        target = self.upload_dir / self.build_permanent_name(file_name)
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            logger.error("Failed to save upload %s: %s", target, exc)
            raise PersistenceError("Failed to save file. Please try again.") from exc
        return self.public_path(target.name)

    async def delete_asset(self, public_path: str) -> bool:
        """Remove a stored asset. Returns False if it was already gone."""
        path = self.resolve_public_path(public_path)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Asset already missing: %s", public_path)
            return False
        logger.info("Deleted asset %s", public_path)
        return True


def get_audio_service() -> AudioMetadataService:
    """FastAPI dependency returning a service bound to the global settings."""
    return AudioMetadataService.from_settings(settings)
