"""Cloudinary client for persisting generated media."""

import hashlib
import time
from typing import Any, Optional, Union

import httpx
import structlog

from artifex.models.media_asset import MediaAsset
from artifex.services.exceptions import (
    MediaAuthError,
    MediaNetworkError,
    MediaRateLimitError,
    MediaStoreNotConfiguredError,
    MediaUploadError,
    MediaValidationError,
)

logger = structlog.get_logger()

UPLOAD_TIMEOUT_SECONDS = 60.0
THUMBNAIL_TRANSFORMATION = "c_fill,w_300,h_300"


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    """Cloudinary request signature.

    SHA-1 over the alphabetically sorted ``key=value`` pairs joined with ``&``, with the
    API secret appended. ``file``, ``api_key`` and ``resource_type`` are not signed.
    """
    to_sign = "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key not in ("file", "api_key", "resource_type") and params[key] not in (None, "")
    )
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryClient:
    """Media store backed by the Cloudinary upload API."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        base_folder: str = "artifex/generations",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Cloudinary client.

        Args:
            cloud_name: Cloudinary cloud name (from CLOUDINARY_CLOUD_NAME env var)
            api_key: Cloudinary API key
            api_secret: Cloudinary API secret, used for request signing only
            base_folder: Folder every upload is placed under
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_folder = base_folder.strip("/")
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def upload_url(self, resource_type: str) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/{resource_type}/upload"

    def thumbnail_url(self, public_id: str, resource_type: str) -> str:
        # Video thumbnails are rendered as a still frame
        suffix = ".jpg" if resource_type == "video" else ""
        return (
            f"https://res.cloudinary.com/{self.cloud_name}/{resource_type}/upload/"
            f"{THUMBNAIL_TRANSFORMATION}/{public_id}{suffix}"
        )

    async def persist(
        self,
        source: Union[bytes, str],
        folder_hint: str,
        resource_type: str = "image",
    ) -> MediaAsset:
        """Upload raw bytes or a remote URL and return the durable asset.

        Remote URLs are fetched by Cloudinary itself, bytes are sent as multipart.

        Args:
            source: Raw media bytes or an http(s) URL
            folder_hint: Sub-folder under the base folder (the caller's tier)
            resource_type: "image" or "video"

        Returns:
            MediaAsset with durable_url, dimensions, format, size and thumbnail

        Raises:
            MediaStoreNotConfiguredError: Credentials missing
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid credentials (401, 403), bad request (400)
        """
        if not self.is_configured:
            raise MediaStoreNotConfiguredError(
                "Cloudinary is not configured. Set CLOUDINARY_CLOUD_NAME, "
                "CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
            )

        params: dict[str, Any] = {
            "folder": f"{self.base_folder}/{folder_hint}" if folder_hint else self.base_folder,
            "timestamp": int(time.time()),
        }
        form = {**params, "api_key": self.api_key, "signature": sign_params(params, self.api_secret)}
        files = None
        if isinstance(source, bytes):
            files = {"file": ("upload", source, "application/octet-stream")}
        else:
            form["file"] = source

        try:
            async with httpx.AsyncClient(
                timeout=UPLOAD_TIMEOUT_SECONDS, transport=self.transport
            ) as client:
                response = await client.post(
                    self.upload_url(resource_type),
                    data={key: str(value) for key, value in form.items()},
                    files=files,
                )
        except httpx.TimeoutException as e:
            raise MediaNetworkError(
                f"Request timeout after {UPLOAD_TIMEOUT_SECONDS}s: {str(e)}"
            ) from e
        except httpx.HTTPError as e:
            raise MediaNetworkError(f"Network error: {str(e)}") from e

        # Error classification
        if response.status_code == 429:
            raise MediaRateLimitError(f"Rate limit exceeded: {response.text}")
        elif response.status_code >= 500:
            raise MediaNetworkError(
                f"Service unavailable ({response.status_code}): {response.text}"
            )
        elif response.status_code in (401, 403):
            raise MediaAuthError(
                f"Cloudinary rejected the credentials ({response.status_code}). "
                "Check CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
            )
        elif response.status_code in (400, 404, 420):
            raise MediaValidationError(f"Bad request: {response.text}")
        elif not response.is_success:
            raise MediaUploadError(
                f"Unexpected Cloudinary response ({response.status_code}): {response.text}"
            )

        result = response.json()
        public_id = result["public_id"]
        logger.debug("media.uploaded", public_id=public_id, resource_type=resource_type)
        return MediaAsset(
            source_url=source if isinstance(source, str) else result["secure_url"],
            durable_url=result["secure_url"],
            width=result.get("width"),
            height=result.get("height"),
            format=result.get("format"),
            byte_size=result.get("bytes"),
            thumbnail_url=self.thumbnail_url(public_id, resource_type),
            public_id=public_id,
            persisted=True,
        )
