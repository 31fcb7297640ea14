# registry/content_store.py
"""
Content-addressed, immutable storage for submission content.

Two backends, picked by REGISTRY["CONTENT_STORE_BACKEND"]:
- "ipfs": IPFS HTTP API (/api/v0/add, pinned), reference "ipfs://<cid>"
- "storage": Django default storage keyed by SHA-256, reference
  "sha256:<hex>" (local media in dev, S3 through django-storages in prod)

store() raises ContentStoreFailure on any error; callers must not create a
submission without a reference.
"""
import hashlib
import logging
from dataclasses import dataclass

import requests
from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from .exceptions import ContentStoreFailure

logger = logging.getLogger("scribe.registry.content")


@dataclass(frozen=True)
class StoredContent:
    content_ref: str
    content_hash: str
    size: int


def content_digest(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class IPFSContentStore:
    def __init__(self, api_url: str, project_id: str = "", project_secret: str = "", timeout: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.auth = (project_id, project_secret) if project_id else None

    def store(self, content: bytes, filename: str = "content") -> StoredContent:
        digest = content_digest(content)
        try:
            response = requests.post(
                f"{self.api_url}/api/v0/add",
                params={"pin": "true", "cid-version": "1"},
                files={"file": (filename, content)},
                auth=self.auth,
                timeout=self.timeout,
            )
            response.raise_for_status()
            cid = response.json().get("Hash")
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"IPFS upload failed ({len(content)} bytes): {e}")
            raise ContentStoreFailure(reason=str(e)) from e

        if not cid:
            raise ContentStoreFailure(reason="IPFS response missing Hash")

        logger.info(f"Stored {len(content)} bytes on IPFS: {cid}")
        return StoredContent(content_ref=f"ipfs://{cid}", content_hash=digest, size=len(content))


class StorageContentStore:
    """Content addressing on top of any Django storage backend."""

    prefix = "content"

    def __init__(self, storage=None):
        self.storage = storage or default_storage

    def path_for(self, digest: str) -> str:
        return f"{self.prefix}/{digest[:2]}/{digest}"

    def store(self, content: bytes, filename: str = "content") -> StoredContent:
        digest = content_digest(content)
        path = self.path_for(digest)
        try:
            # Same bytes, same key: an existing object is never overwritten
            if not self.storage.exists(path):
                saved = self.storage.save(path, ContentFile(content))
                if saved != path:
                    # A concurrent writer stored the same bytes first; drop our renamed copy
                    self.storage.delete(saved)
        except Exception as e:
            logger.warning(f"Storage upload failed for {path}: {e}")
            raise ContentStoreFailure(reason=str(e)) from e

        logger.info(f"Stored {len(content)} bytes at {path}")
        return StoredContent(content_ref=f"sha256:{digest}", content_hash=digest, size=len(content))


def get_content_store():
    config = settings.REGISTRY
    backend = config.get("CONTENT_STORE_BACKEND", "storage")
    if backend == "ipfs":
        return IPFSContentStore(
            api_url=config["IPFS_API_URL"],
            project_id=config.get("IPFS_PROJECT_ID", ""),
            project_secret=config.get("IPFS_PROJECT_SECRET", ""),
            timeout=config.get("CONTENT_STORE_TIMEOUT", 30.0),
        )
    if backend == "storage":
        return StorageContentStore()
    raise ValueError(f"Unknown CONTENT_STORE_BACKEND: {backend}")
