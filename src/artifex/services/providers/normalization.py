"""Normalization of heterogeneous provider payloads.

Vendors disagree on almost everything: the envelope key (``data``, ``result``...),
status casing (``COMPLETED`` vs ``completed``), where outputs live and whether an
output is a plain URL or an object holding one. Everything here is a pure function
of the raw payload so the orchestrator never sees a vendor shape.
"""

from typing import Any, Mapping, Optional

from artifex.services.providers.base import NormalizedStatus, ProviderStatus

STATUS_TABLE: dict[str, ProviderStatus] = {
    "created": ProviderStatus.RUNNING,
    "pending": ProviderStatus.RUNNING,
    "queued": ProviderStatus.RUNNING,
    "in_queue": ProviderStatus.RUNNING,
    "starting": ProviderStatus.RUNNING,
    "in_progress": ProviderStatus.RUNNING,
    "processing": ProviderStatus.RUNNING,
    "running": ProviderStatus.RUNNING,
    "completed": ProviderStatus.SUCCEEDED,
    "succeeded": ProviderStatus.SUCCEEDED,
    "success": ProviderStatus.SUCCEEDED,
    "done": ProviderStatus.SUCCEEDED,
    "failed": ProviderStatus.FAILED,
    "error": ProviderStatus.FAILED,
    "canceled": ProviderStatus.FAILED,
    "cancelled": ProviderStatus.FAILED,
}

ENVELOPE_KEYS = ("data", "result", "prediction")
TASK_ID_KEYS = ("task_id", "id", "generation_id", "prediction_id")
OUTPUT_LIST_KEYS = ("generated", "output", "outputs", "images", "videos")
OUTPUT_SINGLE_KEYS = ("image_url", "video_url", "url")
OUTPUT_ITEM_URL_KEYS = ("url", "image_url", "video_url", "image", "uri", "secure_url")
ERROR_KEYS = ("error", "message", "detail", "logs_error")


def unwrap(raw: Any) -> dict[str, Any]:
    """Strip vendor envelopes until the object holding the status is reached."""
    payload: Any = raw
    for _ in range(3):
        if not isinstance(payload, Mapping):
            break
        inner = next(
            (payload[key] for key in ENVELOPE_KEYS if isinstance(payload.get(key), Mapping)),
            None,
        )
        if inner is None:
            break
        payload = inner
    return dict(payload) if isinstance(payload, Mapping) else {}


def map_status(raw_status: Any) -> Optional[ProviderStatus]:
    if not isinstance(raw_status, str):
        return None
    return STATUS_TABLE.get(raw_status.strip().lower().replace("-", "_").replace(" ", "_"))


def extract_url(item: Any) -> Optional[str]:
    """Return the URL of one output item (plain string or object with a URL field)."""
    if isinstance(item, str):
        return item or None
    if isinstance(item, Mapping):
        for key in OUTPUT_ITEM_URL_KEYS:
            value = item.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def extract_outputs(payload: Mapping[str, Any]) -> list[str]:
    for key in OUTPUT_LIST_KEYS:
        value = payload.get(key)
        if isinstance(value, (list, tuple)):
            urls = [url for url in (extract_url(item) for item in value) if url]
            if urls:
                return urls
        elif value is not None:
            url = extract_url(value)
            if url:
                return [url]
    for key in OUTPUT_SINGLE_KEYS:
        url = extract_url(payload.get(key))
        if url:
            return [url]
    return []


def extract_task_id(payload: Mapping[str, Any]) -> Optional[str]:
    for key in TASK_ID_KEYS:
        value = payload.get(key)
        if isinstance(value, (str, int)) and str(value):
            return str(value)
    return None


def extract_error(payload: Mapping[str, Any]) -> Optional[str]:
    for key in ERROR_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, Mapping):
            message = value.get("message") or value.get("detail")
            if message:
                return str(message)
    return None


def normalize_status(raw: Any) -> NormalizedStatus:
    """Map a raw provider payload onto running / succeeded / failed.

    Fallback rules when the status string is missing or unknown:
    - outputs present → succeeded
    - error present → failed
    - otherwise → running
    """
    payload = unwrap(raw)
    outputs = extract_outputs(payload)
    error = extract_error(payload)
    status = map_status(payload.get("status"))

    if status is None:
        if outputs:
            status = ProviderStatus.SUCCEEDED
        elif error:
            status = ProviderStatus.FAILED
        else:
            status = ProviderStatus.RUNNING

    return NormalizedStatus(
        status=status,
        task_id=extract_task_id(payload),
        outputs=outputs if status is ProviderStatus.SUCCEEDED else [],
        error=error if status is ProviderStatus.FAILED else None,
    )
