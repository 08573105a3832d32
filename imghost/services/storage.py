import asyncio
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Final
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from imghost.core.config import Settings

logger = logging.getLogger(__name__)

CURSOR_START: Final[str] = ""
CURSOR_END: Final[str] = ""
NO_PREFIX: Final[str] = ""

CHUNK_SIZE = 64 * 1024

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class StorageError(Exception):
    """Raised when an object store operation fails."""


class ObjectNotFoundError(StorageError):
    """Raised when a key does not exist in the bucket."""


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    size: int | None = None
    last_modified: datetime | None = None


class ObjectStream:
    """Byte chunks read from an open object; closes the source when exhausted."""

    def __init__(self, source: BinaryIO, chunk_size: int = CHUNK_SIZE) -> None:
        self._source = source
        self._chunk_size = chunk_size
        self._pending: bytes | None = None
        self.closed = False

    def prefetch(self) -> None:
        """Read the first chunk ahead of iteration so source errors surface early."""
        try:
            self._pending = self._source.read(self._chunk_size)
        except (OSError, BotoCoreError) as exc:
            self.close()
            raise StorageError(str(exc) or type(exc).__name__) from exc

    def __iter__(self) -> Iterator[bytes]:
        try:
            if self._pending is not None:
                chunk, self._pending = self._pending, None
                if not chunk:
                    return
                yield chunk
            while True:
                chunk = self._source.read(self._chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def read(self) -> bytes:
        return b"".join(self)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._source.close()


class ObjectStore:
    """Handle to a single bucket of keyed blobs.

    Subclasses must be safe to share between concurrent requests.
    """

    scheme: str = ""

    async def check(self) -> None:
        raise NotImplementedError

    async def put(self, key: str, data: BinaryIO, size: int) -> StoredObject:
        raise NotImplementedError

    async def item(self, key: str) -> StoredObject:
        raise NotImplementedError

    async def open(self, item: StoredObject) -> ObjectStream:
        raise NotImplementedError

    async def items(
        self, prefix: str, cursor: str, limit: int
    ) -> tuple[list[StoredObject], str]:
        raise NotImplementedError


def _client_error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStore(ObjectStore):
    """S3-compatible storage backend."""

    scheme: Final[str] = "s3"

    def __init__(self, settings: Settings, client=None) -> None:
        self.settings = settings
        self.bucket = settings.aws_bucket
        self.region = settings.aws_region
        self.endpoint = settings.s3_endpoint
        if client is None:
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=self.endpoint,
                aws_access_key_id=settings.aws_access_key,
                aws_secret_access_key=settings.aws_secret_key,
                region_name=self.region,
                config=Config(signature_version="s3v4"),
            )
        self.client = client

    def object_url(self, key: str) -> str:
        quoted = quote(key)
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{quoted}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quoted}"

    def _translate(self, exc: Exception, key: str | None = None) -> StorageError:
        if isinstance(exc, ClientError) and _client_error_code(exc) in _NOT_FOUND_CODES:
            return ObjectNotFoundError(f"not found: {key}" if key else str(exc))
        return StorageError(str(exc))

    async def check(self) -> None:
        def _check() -> None:
            self.client.head_bucket(Bucket=self.bucket)

        try:
            await asyncio.to_thread(_check)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"bucket {self.bucket}: {exc}") from exc

    async def put(self, key: str, data: BinaryIO, size: int) -> StoredObject:
        def _upload() -> None:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentLength=size,
            )

        try:
            await asyncio.to_thread(_upload)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc) from exc
        return StoredObject(key=key, url=self.object_url(key), size=size)

    async def item(self, key: str) -> StoredObject:
        def _head() -> dict:
            return self.client.head_object(Bucket=self.bucket, Key=key)

        try:
            head = await asyncio.to_thread(_head)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, key) from exc
        return StoredObject(
            key=key,
            url=self.object_url(key),
            size=head.get("ContentLength"),
            last_modified=head.get("LastModified"),
        )

    async def open(self, item: StoredObject) -> ObjectStream:
        def _get() -> dict:
            return self.client.get_object(Bucket=self.bucket, Key=item.key)

        try:
            response = await asyncio.to_thread(_get)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, item.key) from exc
        return ObjectStream(response["Body"])

    async def items(
        self, prefix: str, cursor: str, limit: int
    ) -> tuple[list[StoredObject], str]:
        params: dict = {"Bucket": self.bucket, "MaxKeys": limit}
        if prefix != NO_PREFIX:
            params["Prefix"] = prefix
        if cursor != CURSOR_START:
            params["ContinuationToken"] = cursor

        def _list() -> dict:
            return self.client.list_objects_v2(**params)

        try:
            response = await asyncio.to_thread(_list)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc) from exc

        found = [
            StoredObject(
                key=obj["Key"],
                url=self.object_url(obj["Key"]),
                size=obj.get("Size"),
                last_modified=obj.get("LastModified"),
            )
            for obj in response.get("Contents", [])
        ]
        if response.get("IsTruncated"):
            return found, response.get("NextContinuationToken", CURSOR_END)
        return found, CURSOR_END


class LocalObjectStore(ObjectStore):
    """Local filesystem storage intended for development use."""

    scheme: Final[str] = "local"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.base_path = Path(settings.local_storage_dir).resolve()

    def _key_path(self, key: str) -> Path:
        # Prevent directory traversal by resolving inside base path
        candidate = self.base_path.joinpath(*Path(key).parts).resolve()
        if candidate == self.base_path or not candidate.is_relative_to(self.base_path):
            raise StorageError(f"invalid storage key: {key}")
        return candidate

    def _describe(self, key: str, path: Path) -> StoredObject:
        stat = path.stat()
        return StoredObject(
            key=key,
            url=path.as_uri(),
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    async def check(self) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(str(exc)) from exc

    async def put(self, key: str, data: BinaryIO, size: int) -> StoredObject:
        target = self._key_path(key)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            remaining = size
            with target.open("wb") as f:
                while remaining > 0:
                    chunk = data.read(min(CHUNK_SIZE, remaining))
                    if not chunk:
                        break
                    f.write(chunk)
                    remaining -= len(chunk)
            if remaining:
                raise StorageError(f"short read: {remaining} of {size} bytes missing")

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        return self._describe(key, target)

    async def item(self, key: str) -> StoredObject:
        path = self._key_path(key)
        if not path.is_file():
            raise ObjectNotFoundError(f"not found: {key}")
        return self._describe(key, path)

    async def open(self, item: StoredObject) -> ObjectStream:
        path = self._key_path(item.key)
        try:
            source = path.open("rb")
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(f"not found: {item.key}") from exc
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        return ObjectStream(source)

    async def items(
        self, prefix: str, cursor: str, limit: int
    ) -> tuple[list[StoredObject], str]:
        def _scan() -> list[str]:
            if not self.base_path.is_dir():
                return []
            return sorted(
                path.relative_to(self.base_path).as_posix()
                for path in self.base_path.rglob("*")
                if path.is_file()
            )

        try:
            keys = await asyncio.to_thread(_scan)
            selected = [
                key
                for key in keys
                if key.startswith(prefix) and (cursor == CURSOR_START or key > cursor)
            ]
            page = selected[:limit]
            found = [self._describe(key, self._key_path(key)) for key in page]
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        if page and len(selected) > limit:
            return found, page[-1]
        return found, CURSOR_END


def create_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "local":
        store: ObjectStore = LocalObjectStore(settings)
        logger.info("Using local object store at %s", store.base_path)
    else:
        store = S3ObjectStore(settings)
        logger.info("Using S3 bucket %s in %s", store.bucket, store.region)
    return store
