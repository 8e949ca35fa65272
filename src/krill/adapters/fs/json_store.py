from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from krill.services.errors import StoreError

_log = logging.getLogger("krill.store")


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except OSError:
        if tmp.exists():
            tmp.unlink()
        raise


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


class JsonDocumentStore:
    """A single JSON document on disk.

    Every write goes to a temporary file next to the target and is moved into
    place with ``os.replace``, so readers see either the old or the new
    document.  ``transaction()`` holds the document lock across a full
    read-modify-write; plain ``load``/``replace`` calls do not
    touch the lock, so code already inside a transaction may still use them.

    The lock belongs to this instance.  Components that share a document must
    share the store object.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path).expanduser()
        self.lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"JsonDocumentStore({str(self.path)!r})"

    async def exists(self) -> bool:
        return await asyncio.to_thread(self.path.exists)

    async def read_bytes(self) -> bytes | None:
        try:
            return await asyncio.to_thread(_read_bytes, self.path)
        except OSError as exc:
            raise StoreError(f"cannot read {self.path}: {exc}") from exc

    async def write_bytes(self, data: bytes) -> None:
        try:
            await asyncio.to_thread(_write_atomic, self.path, data)
        except OSError as exc:
            raise StoreError(f"cannot write {self.path}: {exc}") from exc

    async def load(self, default: Callable[[], Any] | None = None) -> Any:
        """Parse the document; a missing file yields ``default()`` (or ``None``)."""
        raw = await self.read_bytes()
        if raw is None:
            return default() if default is not None else None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StoreError(f"corrupt JSON document {self.path}: {exc}") from exc

    async def replace(self, doc: Any) -> None:
        payload = json.dumps(doc, ensure_ascii=False, indent=2).encode("utf-8")
        await self.write_bytes(payload)
        _log.debug("document written path=%s bytes=%d", self.path, len(payload))

    @asynccontextmanager
    async def transaction(self, default: Callable[[], Any] | None = None) -> AsyncIterator[Any]:
        """Yield the loaded document under the lock and persist it on clean exit.

        The caller mutates the yielded object in place.  If the block raises,
        nothing is written.
        """
        async with self.lock:
            doc = await self.load(default)
            yield doc
            await self.replace(doc)
