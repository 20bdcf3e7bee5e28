# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

import aiohttp

from common.state import is_valid_key

logger = logging.getLogger("backup")

CONTENT_TYPES: dict[str, str] = {
    "image/bmp": "bmp",
    "image/gif": "gif",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/tiff": "tiff",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/ogg": "ogg",
    "video/webm": "webm",
    "text/plain": "txt",
}
FALLBACK_EXTENSION = "bin"

# every extension a finished download can carry, checked before fetching
FILE_EXTENSIONS: tuple[str, ...] = tuple(CONTENT_TYPES.values()) + (FALLBACK_EXTENSION,)


@dataclass(frozen=True)
class DownloadTask:
    server_id: int
    channel_id: int
    message_id: int
    attachment_id: int
    url: str
    whitelist_key: str

    @property
    def file_stem(self) -> str:
        return f"{self.message_id}-{self.attachment_id}"


def extension_for(content_type: Optional[str]) -> str:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    ext = CONTENT_TYPES.get(ct)
    if ext is None:
        logger.warning("[❓] Unknown content type: %s", content_type)
        return FALLBACK_EXTENSION
    return ext


class DownloadQueue:
    """
    Unbounded FIFO of pending attachment downloads.

    Producers call :meth:`enqueue` from the event loop; the single consumer
    marks each task done so :meth:`wait_drained` can act as backpressure.
    """

    def __init__(self):
        self._q: asyncio.Queue[DownloadTask] = asyncio.Queue()

    def enqueue(self, task: DownloadTask) -> None:
        self._q.put_nowait(task)

    async def get(self) -> DownloadTask:
        return await self._q.get()

    def task_done(self) -> None:
        self._q.task_done()

    async def wait_drained(self) -> None:
        await self._q.join()

    def __len__(self) -> int:
        return self._q.qsize()


class Downloader:
    def __init__(
        self,
        queue: DownloadQueue,
        backup_root: Union[str, Path],
        session: Optional[aiohttp.ClientSession] = None,
        *,
        timeout: float = 180.0,
    ):
        self.queue = queue
        self.backup_root = Path(backup_root)
        self.session = session
        self.timeout = timeout
        self._listeners: list[Callable[[Path], Any]] = []

    def set_session(self, session: aiohttp.ClientSession) -> None:
        self.session = session

    def add_listener(self, callback: Callable[[Path], Any]) -> None:
        """Register a callable (sync or async) told about every saved file."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[Path], Any]) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(callback)

    def destination_for(self, task: DownloadTask) -> Path:
        return self.backup_root / task.whitelist_key / str(task.channel_id)

    @staticmethod
    def existing_file(dest_dir: Path, task: DownloadTask) -> Optional[Path]:
        for ext in FILE_EXTENSIONS:
            candidate = dest_dir / f"{task.file_stem}.{ext}"
            if candidate.exists():
                return candidate
        return None

    async def _notify(self, path: Path) -> None:
        for cb in list(self._listeners):
            try:
                res = cb(path)
                if inspect.isawaitable(res):
                    await res
            except Exception:
                logger.exception("[⛔] Download listener failed for %s", path)

    async def process(self, task: DownloadTask) -> Optional[Path]:
        """
        Download one attachment. Returns the saved path, or None when the
        task was skipped or failed. Failures are never retried.
        """
        if not is_valid_key(task.whitelist_key):
            logger.warning(
                "[⚠️] Refusing download for message %s, bad folder key %r",
                task.message_id,
                task.whitelist_key,
            )
            return None

        dest = self.destination_for(task)
        dest.mkdir(parents=True, exist_ok=True)

        existing = self.existing_file(dest, task)
        if existing is not None:
            logger.info("[⏭️] Skipping already downloaded file %s", existing.name)
            return None

        part: Optional[Path] = None
        try:
            if self.session is None:
                raise RuntimeError("no HTTP session")
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with self.session.get(task.url, timeout=timeout) as resp:
                if not 200 <= resp.status < 300:
                    logger.warning(
                        "[⚠️] HTTP %s downloading %s for message %s",
                        resp.status,
                        task.url,
                        task.message_id,
                    )
                    return None

                ext = extension_for(resp.content_type)
                out_path = dest / f"{task.file_stem}.{ext}"
                part = out_path.with_name(out_path.name + ".part")
                with open(part, "wb") as f:
                    async for chunk in resp.content.iter_chunked(1 << 16):
                        if chunk:
                            f.write(chunk)
            os.replace(part, out_path)
            part = None
        except Exception as e:
            logger.warning(
                "[⛔] Error downloading %s for message %s, error: %s",
                task.url,
                task.message_id,
                e,
            )
            return None
        finally:
            if part is not None:
                with contextlib.suppress(OSError):
                    part.unlink()

        logger.info("[📥] Downloaded %s for message %s", task.url, task.message_id)
        await self._notify(out_path)
        return out_path

    async def run(self) -> None:
        logger.info("[📥] Attachment downloader started")
        while True:
            task = await self.queue.get()
            try:
                await self.process(task)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "[⛔] Unexpected error handling download for message %s",
                    task.message_id,
                )
            finally:
                self.queue.task_done()
