"""Write-once certificate storage.

The wallet never reads certificate content back.  It publishes the bytes,
records the returned content identifier (CID) on the holder's result,
and renders links through a public gateway.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol, runtime_checkable

import httpx

from eduwallet.core.config import SETTINGS
from eduwallet.services.errors import BlobStoreError

logger = logging.getLogger(__name__)


def certificate_url(cid: str | None, gateway: str | None = None) -> str | None:
    if not cid:
        return None
    return f"{gateway or SETTINGS.ipfs_gateway}{cid}"


@runtime_checkable
class BlobStore(Protocol):
    async def publish(self, content: bytes) -> str:
        """Store content, return its content identifier."""
        ...


class InMemoryBlobStore:
    """Content-addressed dict.  Same bytes, same identifier."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    async def publish(self, content: bytes) -> str:
        if not content:
            raise BlobStoreError("refusing to publish an empty certificate")
        cid = "sha256-" + hashlib.sha256(content).hexdigest()
        self.blobs[cid] = content
        return cid


class IpfsBlobStore:
    """Publishes through an IPFS node's HTTP API (/api/v0/add)."""

    def __init__(self, api_url: str, *, timeout: float = 30.0) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    async def publish(self, content: bytes) -> str:
        if not content:
            raise BlobStoreError("refusing to publish an empty certificate")
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._api_url}/api/v0/add",
                    params={"pin": "true", "cid-version": "1"},
                    files={"file": ("certificate", content)},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Certificate publish failed: %s", e)
            raise BlobStoreError(f"blob store unavailable: {e}") from e

        cid = response.json().get("Hash")
        if not cid:
            raise BlobStoreError("blob store returned no content identifier")
        logger.info("Published certificate cid=%s bytes=%d", cid, len(content))
        return cid


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------


def make_blob_store(api_url: str | None) -> BlobStore:
    """IPFS when IPFS_API_URL is set, otherwise in memory."""
    if api_url:
        logger.info("Blob store: IPFS node at %s", api_url)
        return IpfsBlobStore(api_url)
    logger.info("Blob store: in memory (IPFS_API_URL not set)")
    return InMemoryBlobStore()


blob_store: BlobStore = make_blob_store(SETTINGS.ipfs_api_url)
