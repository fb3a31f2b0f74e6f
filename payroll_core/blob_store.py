"""
Contract Document Storage Module

Opaque blob storage for signed loan contracts. Uploads return a storage path;
viewing a contract goes through a short-lived signed URL. The local backend
signs download URLs with a JWT so links expire and cannot be re-pointed at
another file.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta
from pathlib import Path, PurePosixPath
from typing import Dict, Optional, Tuple, Union
from urllib.parse import urlencode
import json
import logging
import threading

import jwt

from .errors import StorageError


logger = logging.getLogger(__name__)


def normalize_key(key: str) -> str:
    """Validate a blob key and return it in canonical 'a/b/c' form"""
    if not key or not isinstance(key, str):
        raise StorageError("Storage key must be a non-empty string")

    path = PurePosixPath(key.replace("\\", "/"))
    if path.is_absolute() or any(part in ("..", "") for part in path.parts):
        raise StorageError(f"Invalid storage key '{key}'")
    return str(path)


class BlobStore(ABC):
    """Abstract interface for contract document storage"""

    @abstractmethod
    def upload(self, key: str, content: bytes, content_type: str) -> str:
        """Store content under key and return its storage path"""
        pass

    @abstractmethod
    def download(self, path: str) -> Tuple[bytes, str]:
        """Return (content, content_type) for a stored path"""
        pass

    @abstractmethod
    def signed_url(self, path: str, ttl_seconds: int) -> str:
        """Return a URL granting read access to path for ttl_seconds"""
        pass

    @abstractmethod
    def verify_token(self, token: str) -> str:
        """Resolve a signed URL token back to its storage path"""
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Remove a stored object"""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether a path is stored"""
        pass


class TokenSigner:
    """Issues and verifies JWT download tokens for blob paths"""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def issue(self, path: str, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": path,
            "scope": "contract:read",
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """Return the path a token grants access to"""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise StorageError("Contract link has expired")
        except jwt.InvalidTokenError:
            raise StorageError("Invalid contract link")

        if payload.get("scope") != "contract:read" or not payload.get("sub"):
            raise StorageError("Invalid contract link")
        return payload["sub"]


class InMemoryBlobStore(BlobStore):
    """In-memory blob store for testing"""

    def __init__(self, base_url: str = "memory://contracts", secret: str = "test-secret"):
        self.base_url = base_url.rstrip("/")
        self.signer = TokenSigner(secret)
        self._objects: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        path = normalize_key(key)
        with self._lock:
            self._objects[path] = (bytes(content), content_type)
        return path

    def download(self, path: str) -> Tuple[bytes, str]:
        with self._lock:
            if path not in self._objects:
                raise StorageError(f"Contract '{path}' not found")
            return self._objects[path]

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        if not self.exists(path):
            raise StorageError(f"Contract '{path}' not found")
        token = self.signer.issue(path, ttl_seconds)
        return f"{self.base_url}?{urlencode({'token': token})}"

    def verify_token(self, token: str) -> str:
        return self.signer.verify(token)

    def delete(self, path: str) -> bool:
        with self._lock:
            return self._objects.pop(path, None) is not None

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._objects


class LocalBlobStore(BlobStore):
    """Filesystem blob store; content type kept in a sidecar file"""

    META_SUFFIX = ".meta.json"

    def __init__(self, root: Union[str, Path], base_url: str, secret: str,
                 algorithm: str = "HS256"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.signer = TokenSigner(secret, algorithm)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create contract storage at {self.root}: {e}", cause=e)

    def _resolve(self, path: str) -> Path:
        return self.root.joinpath(*PurePosixPath(normalize_key(path)).parts)

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        path = normalize_key(key)
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
            meta = target.with_name(target.name + self.META_SUFFIX)
            meta.write_text(json.dumps({"content_type": content_type}), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Contract upload failed: {e}", cause=e)

        logger.info("Stored contract %s (%d bytes)", path, len(content))
        return path

    def download(self, path: str) -> Tuple[bytes, str]:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Contract '{path}' not found")
        try:
            content = target.read_bytes()
            meta = target.with_name(target.name + self.META_SUFFIX)
            content_type = "application/octet-stream"
            if meta.is_file():
                content_type = json.loads(meta.read_text(encoding="utf-8")).get(
                    "content_type", content_type
                )
        except OSError as e:
            raise StorageError(f"Contract download failed: {e}", cause=e)
        return content, content_type

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        if not self.exists(path):
            raise StorageError(f"Contract '{path}' not found")
        token = self.signer.issue(normalize_key(path), ttl_seconds)
        return f"{self.base_url}?{urlencode({'token': token})}"

    def verify_token(self, token: str) -> str:
        """Resolve a signed URL token back to its storage path"""
        return self.signer.verify(token)

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        if not target.is_file():
            return False
        try:
            target.unlink()
            meta = target.with_name(target.name + self.META_SUFFIX)
            if meta.is_file():
                meta.unlink()
        except OSError as e:
            raise StorageError(f"Contract delete failed: {e}", cause=e)
        return True

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()
