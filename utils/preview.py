"""Inline PDF preview: direct embeds for public URLs, short-lived blob handles for authenticated files."""
from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from models import Circular
from utils.api_client import APIError, CircularNestAPI

logger = logging.getLogger("app.preview")

DIRECT = "direct"
BLOB = "blob"
FALLBACK = "fallback"


@dataclass
class PreviewBlob:
    handle: str
    owner: str
    content: bytes
    file_name: str
    created_at: float


@dataclass
class PreviewResult:
    mode: str
    record_id: str
    file_name: str
    embed_url: Optional[str] = None
    download_url: Optional[str] = None
    open_url: Optional[str] = None
    handle: Optional[str] = None
    error: Optional[str] = None
    load_timeout_ms: int = 7000

    @property
    def show_fallback(self) -> bool:
        return self.mode == FALLBACK


class BlobPreviewStore:
    """Registry of preview blobs, keyed by an unguessable handle.

    Each owner (one browser session) holds at most one live handle: opening
    a new preview revokes the previous one first, and closing the preview
    revokes whatever is left.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._blobs: Dict[str, PreviewBlob] = {}
        self._by_owner: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, owner: str, content: bytes, file_name: str) -> PreviewBlob:
        with self._lock:
            previous = self._by_owner.pop(owner, None)
            if previous:
                self._blobs.pop(previous, None)
            blob = PreviewBlob(
                handle=secrets.token_urlsafe(24),
                owner=owner,
                content=content,
                file_name=file_name,
                created_at=self._clock(),
            )
            self._blobs[blob.handle] = blob
            self._by_owner[owner] = blob.handle
        if previous:
            logger.debug("preview_blob_replaced", extra={"owner": owner})
        return blob

    def get(self, handle: str, owner: str | None = None) -> Optional[PreviewBlob]:
        blob = self._blobs.get(handle)
        if blob is None:
            return None
        if owner is not None and blob.owner != owner:
            return None
        if self._clock() - blob.created_at > self.ttl_seconds:
            self.revoke(handle)
            return None
        return blob

    def revoke(self, handle: str) -> bool:
        with self._lock:
            blob = self._blobs.pop(handle, None)
            if blob and self._by_owner.get(blob.owner) == handle:
                del self._by_owner[blob.owner]
        return blob is not None

    def revoke_owner(self, owner: str) -> int:
        with self._lock:
            handle = self._by_owner.pop(owner, None)
            if handle and self._blobs.pop(handle, None) is not None:
                return 1
        return 0

    def outstanding(self, owner: str | None = None) -> int:
        if owner is None:
            return len(self._blobs)
        return 1 if owner in self._by_owner else 0

    def sweep(self) -> int:
        cutoff = self._clock() - self.ttl_seconds
        expired = [h for h, blob in list(self._blobs.items()) if blob.created_at < cutoff]
        for handle in expired:
            self.revoke(handle)
        return len(expired)


def choose_strategy(record: Circular) -> str:
    return DIRECT if record.has_public_url else BLOB


def open_preview(
    api: CircularNestAPI,
    store: BlobPreviewStore,
    owner: str,
    record: Circular,
    *,
    source: str,
    blob_url: Callable[[str], str],
    download_url: str,
    load_timeout_seconds: int = 7,
) -> PreviewResult:
    """Prepare a preview for ``record``.

    ``source`` is ``"circular"`` for published records and ``"pending"`` for
    submissions awaiting review; it picks the binary endpoint for the blob
    strategy. Failures never raise: they produce a fallback result carrying
    the download and open-in-new-tab links.
    """
    store.sweep()
    result = PreviewResult(
        mode=DIRECT,
        record_id=record.id,
        file_name=record.download_name,
        download_url=download_url,
        load_timeout_ms=load_timeout_seconds * 1000,
    )

    if choose_strategy(record) == DIRECT:
        # A fresh direct preview replaces any blob this owner still holds.
        store.revoke_owner(owner)
        result.embed_url = record.file_url
        result.open_url = record.file_url
        return result

    try:
        if source == "pending":
            content = api.download_pending_file(record.id)
        else:
            content = api.download_circular(record.id)
        if not content:
            raise APIError("Empty PDF received")
    except APIError as exc:
        store.revoke_owner(owner)
        logger.warning("preview_fallback", extra={"record_id": record.id, "source": source, "error": exc.message})
        result.mode = FALLBACK
        result.error = "Unable to preview PDF in browser. Please download to view."
        result.open_url = download_url
        return result

    blob = store.create(owner, content, record.download_name)
    result.mode = BLOB
    result.handle = blob.handle
    result.embed_url = blob_url(blob.handle)
    result.open_url = result.embed_url
    return result


def close_preview(store: BlobPreviewStore, owner: str) -> int:
    return store.revoke_owner(owner)
