import asyncio
import os
from pathlib import Path
from typing import Any, Dict

import aiofiles
from loguru import logger

from ..base import StorageProvider
from ...exceptions import NotFoundError, UpstreamError, ValidationError
from ...utils.error_handler import convert_exceptions


class LocalStorageProvider(StorageProvider):
    """Local filesystem-based storage provider."""

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: {
                        "base_path": str -> Root directory for local storage (default: ./local_storage)
                        "base_url": str -> Optional public URL prefix for served blobs
                    }
        """
        self.config = config
        self.base_path = Path(config.get("base_path") or "./local_storage").resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = config.get("base_url")
        logger.info(f"LocalStorageProvider initialized at {self.base_path}")

    def _get_file_path(self, key: str, create_parent: bool = False) -> Path:
        """Return full path for a storage key, refusing keys that escape the storage root."""
        file_path = (self.base_path / key).resolve()
        if self.base_path not in file_path.parents:
            raise ValidationError(f"Invalid storage key: {key}")
        if create_parent:
            file_path.parent.mkdir(parents=True, exist_ok=True)
        return file_path

    async def get_file_url(self, key: str, **kwargs) -> str:
        """
        Public URL if ``base_url`` is configured, file:// URL otherwise.
        Ensures consistent format across OS (handles Windows drive letters).
        """
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{key}"

        abs_path = self._get_file_path(key)
        if os.name == "nt":
            return f"file:///{abs_path.as_posix()}"
        return abs_path.as_uri()

    @convert_exceptions({OSError: UpstreamError})
    async def save_file(self, key: str, src_file_path: str, **kwargs) -> str:
        """Copy a local file into the storage directory."""
        dest_path = self._get_file_path(key, create_parent=True)
        async with aiofiles.open(src_file_path, "rb") as src, aiofiles.open(dest_path, "wb") as dst:
            while chunk := await src.read(1024 * 1024):
                await dst.write(chunk)
        logger.info(f"File stored at {dest_path}")
        return key

    @convert_exceptions({OSError: UpstreamError})
    async def save_bytes(self, key: str, data: bytes, **kwargs) -> str:
        dest_path = self._get_file_path(key, create_parent=True)
        async with aiofiles.open(dest_path, "wb") as f:
            await f.write(data)
        logger.debug(f"Saved {len(data)} bytes to {dest_path}")
        return key

    @convert_exceptions({OSError: UpstreamError})
    async def download_to_file(self, key: str, download_path: str, **kwargs) -> str:
        """Copy a blob to a specified path."""
        src_path = self._get_file_path(key)
        if not src_path.exists():
            raise NotFoundError(f"Blob not found: {key}")

        dst_path = Path(download_path)
        dst_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(src_path, "rb") as src, aiofiles.open(dst_path, "wb") as dst:
            while chunk := await src.read(1024 * 1024):
                await dst.write(chunk)
        return str(dst_path)

    @convert_exceptions({OSError: UpstreamError})
    async def load_file_to_memory(self, key: str) -> bytes:
        """Load a blob into memory as bytes."""
        file_path = self._get_file_path(key)
        if not file_path.exists():
            raise NotFoundError(f"Blob not found: {key}")
        async with aiofiles.open(file_path, "rb") as f:
            return await f.read()

    @convert_exceptions({OSError: UpstreamError})
    async def delete_file(self, key: str) -> bool:
        file_path = self._get_file_path(key)
        if not file_path.exists():
            return False
        await asyncio.to_thread(file_path.unlink)
        return True

    async def close(self):
        """No-op for local provider (for interface consistency)."""
        logger.debug("LocalStorageProvider closed (no-op).")
