"""Abstract base class for durable image storage.

Rendered page images and uploaded product photos are kept in job memory
while a human reviews candidates.  When a candidate is approved its image
is promoted to durable object storage so the KB record keeps a stable
public URL after the job expires.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: R2ImageStore
# Located in: src/providers/image_store/
class IImageStore(ABC):
    """Contract for durable, publicly readable image storage."""

    @abstractmethod
    async def upload(self, data: bytes, key: str, mime_type: str) -> str:
        """Store *data* under *key* and return its public URL.

        Raises
        ------
        src.utils.errors.ImageStoreError
            If the upload fails.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"r2"``."""
