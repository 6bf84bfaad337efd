"""Local file storage for uploaded materials and answer scripts.

Files live flat in UPLOAD_DIR and are referenced by `/uploads/<name>` URLs.
"""

import logging
import os
import secrets
import time
from pathlib import Path
from typing import Optional

import aiofiles

logger = logging.getLogger(__name__)

# Use /tmp on read-only hosts, local uploads/ otherwise
if os.environ.get("VERCEL"):
    UPLOAD_DIR = Path("/tmp/uploads")
else:
    UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", "uploads"))

UPLOAD_URL_PREFIX = "/uploads/"


def upload_dir() -> Path:
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    return UPLOAD_DIR


def unique_filename(original_name: str) -> str:
    """`<millis>_<random>.<ext>` keeps names unguessable and collision-free."""
    extension = original_name.rsplit(".", 1)[-1].lower() if "." in original_name else "bin"
    return f"{int(time.time() * 1000)}_{secrets.token_hex(6)}.{extension}"


async def save_file(content: bytes, filename: str) -> Path:
    path = upload_dir() / filename
    async with aiofiles.open(path, "wb") as f:
        await f.write(content)
    return path


def url_for(filename: str) -> str:
    return f"{UPLOAD_URL_PREFIX}{filename}"


def path_for_url(file_url: Optional[str]) -> Optional[Path]:
    """Map a stored file URL back to its path; only the last segment is used."""
    if not file_url:
        return None
    name = file_url.rstrip("/").split("/")[-1]
    if not name or name in (".", ".."):
        return None
    return UPLOAD_DIR / name


async def read_file(path: Path) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read()


def delete_file_for_url(file_url: Optional[str]) -> bool:
    """Delete an uploaded file. Only `/uploads/` URLs are ours to remove."""
    if not file_url or not file_url.startswith(UPLOAD_URL_PREFIX):
        return False
    path = path_for_url(file_url)
    if path is None or not path.exists():
        return False
    path.unlink()
    logger.info("Deleted uploaded file %s", path.name)
    return True
