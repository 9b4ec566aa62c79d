from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import math
from datetime import datetime, timezone

from pydantic import BaseModel, Field, ValidationError

from assessment_recorder.kv_store import KeyValueBackend, StorageError

logger = logging.getLogger("recorder.blobs")

MANIFEST_NAMESPACE = "file"
CHUNK_NAMESPACE = "filechunk"
DEFAULT_CHUNK_SIZE = 900_000
DEFAULT_TTL_SECONDS = 86400 * 30


class BlobNotFound(LookupError):
    """Raised when a manifest or any of its chunks is missing."""


class BlobCorrupted(StorageError):
    """Raised when reassembled bytes disagree with the stored manifest."""


class FileManifest(BaseModel):
    filename: str
    size: int = Field(..., ge=0)
    type: str
    chunkSize: int = Field(..., ge=1)
    chunkCount: int = Field(..., ge=0)
    pages: int = Field(default=0, ge=0)
    sha256: str = ""
    createdAt: str = ""


def manifest_key(file_id: str) -> str:
    return f"{MANIFEST_NAMESPACE}:{file_id}"


def chunk_key(file_id: str, index: int) -> str:
    return f"{CHUNK_NAMESPACE}:{file_id}:{index}"


class ChunkedBlobStore:
    """Stores documents larger than the backend's per-value ceiling as numbered chunks plus a manifest.

    The manifest is written last, so a reader never sees a manifest whose chunks were not all written.
    Chunks left behind by an interrupted write are not cleaned up; they expire with the TTL.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1 byte")
        self._backend = backend
        self._chunk_size = chunk_size
        self._ttl_seconds = ttl_seconds

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def put(self, file_id: str, content: bytes, *, filename: str, content_type: str, pages: int = 0) -> FileManifest:
        chunk_count = math.ceil(len(content) / self._chunk_size)
        for index in range(chunk_count):
            start = index * self._chunk_size
            chunk = content[start : start + self._chunk_size]
            self._backend.set(
                chunk_key(file_id, index),
                base64.b64encode(chunk).decode("ascii"),
                ttl_seconds=self._ttl_seconds,
            )

        manifest = FileManifest(
            filename=filename,
            size=len(content),
            type=content_type,
            chunkSize=self._chunk_size,
            chunkCount=chunk_count,
            pages=pages,
            sha256=hashlib.sha256(content).hexdigest(),
            createdAt=datetime.now(timezone.utc).isoformat(),
        )
        self._backend.set(manifest_key(file_id), manifest.model_dump_json(), ttl_seconds=self._ttl_seconds)
        logger.info(
            "blob_stored",
            extra={
                "event": "blob_stored",
                "file_id": file_id,
                "size_bytes": len(content),
                "chunk_count": chunk_count,
            },
        )
        return manifest

    def manifest(self, file_id: str) -> FileManifest:
        raw = self._backend.get(manifest_key(file_id))
        if raw is None:
            raise BlobNotFound(f"File not found: {file_id}")
        try:
            return FileManifest.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise BlobCorrupted(f"Stored manifest for '{file_id}' is unreadable: {exc}") from exc

    def get(self, file_id: str) -> bytes:
        manifest = self.manifest(file_id)
        parts: list[bytes] = []
        for index in range(manifest.chunkCount):
            encoded = self._backend.get(chunk_key(file_id, index))
            if encoded is None:
                logger.warning(
                    "blob_chunk_missing",
                    extra={"event": "blob_chunk_missing", "file_id": file_id, "chunk_index": index},
                )
                raise BlobNotFound(f"Chunk {index} of {manifest.chunkCount} missing for file '{file_id}'.")
            try:
                parts.append(base64.b64decode(encoded, validate=True))
            except (binascii.Error, ValueError) as exc:
                raise BlobCorrupted(f"Chunk {index} of file '{file_id}' is not valid base64.") from exc

        content = b"".join(parts)
        if len(content) != manifest.size:
            raise BlobCorrupted(
                f"File '{file_id}' reassembled to {len(content)} bytes, manifest says {manifest.size}."
            )
        if manifest.sha256 and hashlib.sha256(content).hexdigest() != manifest.sha256:
            raise BlobCorrupted(f"File '{file_id}' failed checksum verification.")
        return content

    def delete(self, file_id: str) -> int:
        keys = [manifest_key(file_id), *self._backend.keys(f"{CHUNK_NAMESPACE}:{file_id}:")]
        removed = self._backend.delete(*keys)
        logger.info("blob_deleted", extra={"event": "blob_deleted", "file_id": file_id, "keys_removed": removed})
        return removed
