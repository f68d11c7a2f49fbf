"""Durable image store adapters (IImageStore implementations)."""

from src.providers.image_store.r2_image_store import R2ImageStore

__all__ = ["R2ImageStore"]
