from abc import ABC, abstractmethod


class StorageProvider(ABC):
    """
    Abstract base class for blob storage providers.

    Blobs are addressed by storage keys of the form ``folder/name``.
    """

    @abstractmethod
    async def get_file_url(self, key: str, **kwargs) -> str:
        """Generate a URL for a stored blob."""
        pass

    @abstractmethod
    async def save_file(self, key: str, src_file_path: str, **kwargs) -> str:
        """Copy a local file into storage. Returns the storage key."""
        pass

    @abstractmethod
    async def save_bytes(self, key: str, data: bytes, **kwargs) -> str:
        """Save raw bytes to storage. Returns the storage key."""
        pass

    @abstractmethod
    async def download_to_file(self, key: str, download_path: str, **kwargs) -> str:
        """Download a blob to a local file path."""
        pass

    @abstractmethod
    async def load_file_to_memory(self, key: str) -> bytes:
        """Load a blob into memory."""
        pass

    @abstractmethod
    async def delete_file(self, key: str) -> bool:
        """Delete a blob. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def close(self):
        """Close the underlying client and cleanup."""
        pass
