"""
shared/utils/storage.py
Local-disk file store for job photos and issue evidence.
Returns public URLs under UPLOAD_URL_PREFIX; swap for object storage in deployment.
"""

import logging
import secrets
from pathlib import Path
from typing import List, Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from config.settings import settings
from shared.exceptions import ValidationError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "application/pdf": ".pdf",
}


class FileStore:
    def __init__(self, root: str, url_prefix: str):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    async def save(self, upload: UploadFile, folder: str) -> str:
        content_type = _check_type(upload)

        data = await upload.read()
        if len(data) > settings.MAX_UPLOAD_BYTES:
            raise ValidationError(
                f"File size too large. Maximum size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
            )

        name = f"{secrets.token_hex(12)}{_EXTENSIONS.get(content_type, '')}"
        target = self.root / folder / name
        await run_in_threadpool(_write, target, data)
        logger.info("Stored upload %s (%d bytes)", target, len(data))
        return f"{self.url_prefix}/{folder}/{name}"

    async def save_many(
        self, uploads: Optional[List[UploadFile]], folder: str, max_files: int = 5
    ) -> List[str]:
        uploads = [u for u in (uploads or []) if u.filename]
        if len(uploads) > max_files:
            raise ValidationError(f"At most {max_files} files are allowed")
        for upload in uploads:
            _check_type(upload)

        urls: List[str] = []
        try:
            for upload in uploads:
                urls.append(await self.save(upload, folder))
        except Exception:
            await self.delete_many(urls)
            raise
        return urls

    def path_for(self, url: str) -> Optional[Path]:
        """Map a URL issued by save() back to its file, or None for foreign URLs."""
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return None
        target = (self.root / url[len(prefix):]).resolve()
        if self.root.resolve() not in target.parents:
            return None
        return target

    async def delete(self, url: str) -> None:
        target = self.path_for(url)
        if target is None:
            logger.warning("Refusing to delete %s outside the upload root", url)
            return
        await run_in_threadpool(_unlink, target)
        logger.info("Removed upload %s", target)

    async def delete_many(self, urls: List[str]) -> None:
        for url in urls:
            await self.delete(url)


def _check_type(upload: UploadFile) -> str:
    content_type = upload.content_type or ""
    if content_type not in settings.allowed_upload_types:
        raise ValidationError("Only .jpeg, .jpg, .png and .pdf files are allowed")
    return content_type


def _write(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


def _unlink(target: Path) -> None:
    target.unlink(missing_ok=True)


def get_file_store() -> FileStore:
    """FastAPI dependency; overridden in tests."""
    return FileStore(settings.UPLOAD_DIR, settings.UPLOAD_URL_PREFIX)
