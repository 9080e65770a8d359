"""MediaAsset value object - one output unit of a generation job."""

from typing import Optional

from pydantic import BaseModel, Field


class MediaAsset(BaseModel):
    """One generated output.

    ``durable_url`` is set only when the upload to media storage succeeded. A failed
    upload keeps the asset with its provider ``source_url`` and ``persisted=False``.
    """

    source_url: str
    durable_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    byte_size: Optional[int] = Field(default=None, ge=0)
    thumbnail_url: Optional[str] = None
    public_id: Optional[str] = None
    persisted: bool = False
    upload_error: Optional[str] = None

    @property
    def url(self) -> str:
        """Best available URL for clients."""
        return self.durable_url or self.source_url

    @classmethod
    def unpersisted(cls, source_url: str, error: str) -> "MediaAsset":
        return cls(source_url=source_url, persisted=False, upload_error=error)
