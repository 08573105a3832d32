import io
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from imghost.core.config import Settings
from imghost.main import create_app
from imghost.services import storage as storage_service

AUTH_KEY = "secret"

TEMPLATE = """\
<ul>
{% for item in items %}<li data-key="{{ item.key }}">{{ item.url }}</li>
{% endfor %}</ul>
<p id="next">{{ next_cursor }}</p>
"""


class FailingSource(io.RawIOBase):
    """Readable source whose every read fails."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    def read(self, size=-1):
        raise self.error


class MemoryStorage(storage_service.ObjectStore):
    """In-memory bucket recording every call made against it."""

    scheme = "memory"

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple] = []
        self.fail_with: Exception | None = None
        self.read_error: Exception | None = None
        self.received: list = []
        self.streams: list[storage_service.ObjectStream] = []

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _describe(self, key: str) -> storage_service.StoredObject:
        return storage_service.StoredObject(
            key=key, url=f"memory://{key}", size=len(self.objects[key])
        )

    async def check(self) -> None:
        self.calls.append(("check",))

    async def put(self, key, data, size):
        self.calls.append(("put", key, size))
        self.received.append(data)
        self._maybe_fail()
        self.objects[key] = data.read(size)
        return self._describe(key)

    async def item(self, key):
        self.calls.append(("item", key))
        self._maybe_fail()
        if key not in self.objects:
            raise storage_service.ObjectNotFoundError(f"not found: {key}")
        return self._describe(key)

    async def open(self, item):
        self.calls.append(("open", item.key))
        if self.read_error is not None:
            source = FailingSource(self.read_error)
        else:
            source = io.BytesIO(self.objects[item.key])
        stream = storage_service.ObjectStream(source, chunk_size=3)
        self.streams.append(stream)
        return stream

    async def items(self, prefix, cursor, limit):
        self.calls.append(("items", prefix, cursor, limit))
        self._maybe_fail()
        keys = sorted(
            key
            for key in self.objects
            if key.startswith(prefix)
            and (cursor == storage_service.CURSOR_START or key > cursor)
        )
        page = keys[:limit]
        next_cursor = page[-1] if len(keys) > limit else storage_service.CURSOR_END
        return [self._describe(key) for key in page], next_cursor


@pytest.fixture
def template_path(tmp_path):
    path = tmp_path / "index.tmpl"
    path.write_text(TEMPLATE, encoding="utf-8")
    return path


@pytest.fixture
def settings(template_path, tmp_path):
    return Settings(
        PORT=8080,
        AUTH_KEY=AUTH_KEY,
        STORAGE_BACKEND="local",
        LOCAL_STORAGE_DIR=str(tmp_path / "storage"),
        TEMPLATE_PATH=str(template_path),
    )


@pytest.fixture
def store():
    return MemoryStorage()


@pytest.fixture
def app_instance(settings, store):
    return create_app(settings, store=store)


@pytest_asyncio.fixture
async def client(app_instance):
    transport = ASGITransport(app=app_instance)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
