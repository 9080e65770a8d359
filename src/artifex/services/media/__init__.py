"""Media storage clients."""

from typing import Protocol, Union

from artifex.core.config import Settings
from artifex.models.media_asset import MediaAsset
from artifex.services.media.cloudinary_client import CloudinaryClient


class MediaStore(Protocol):
    """Durable storage for generated outputs. Safe to call concurrently."""

    async def persist(
        self, source: Union[bytes, str], folder_hint: str, resource_type: str = "image"
    ) -> MediaAsset: ...


def build_media_store(settings: Settings) -> MediaStore:
    return CloudinaryClient(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        base_folder=settings.cloudinary_folder,
    )


__all__ = ["CloudinaryClient", "MediaStore", "build_media_store"]
