import logging
import time
from typing import BinaryIO

from imghost.services.storage import ObjectStore, StoredObject

logger = logging.getLogger(__name__)


def mint_key(filetype: str, now: float | None = None) -> str:
    """Build an object key from the upload time and the client's extension.

    Two uploads with the same extension in the same second share a key; the
    later write wins.
    """
    seconds = int(time.time() if now is None else now)
    return f"{seconds}.{filetype}"


async def store_upload(
    store: ObjectStore, filetype: str, data: BinaryIO, size: int
) -> StoredObject:
    key = mint_key(filetype)
    stored = await store.put(key, data, size)
    logger.info("Stored upload %s (%d bytes)", key, size)
    return stored
