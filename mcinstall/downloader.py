import asyncio
import logging
import math
import pathlib
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, List, NamedTuple, Optional, Sequence

import aiohttp
import aiofiles
import aiofiles.os

from .errors import NetworkError, OperationCancelled
from .events import Error, Estimated, EventBus, Progress, Speed

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_CONCURRENCY = 5
CHUNK_SIZE = 8192
TELEMETRY_INTERVAL = 0.5
SPEED_SAMPLES = 5


@dataclass(frozen=True)
class DownloadTask:
    url: str
    path: pathlib.Path
    folder: pathlib.Path
    size: int = 0
    label: Optional[str] = None


class UrlInfo(NamedTuple):
    size: int
    status: int


class MirrorHit(NamedTuple):
    url: str
    size: int
    status: int


class _Batch:
    """Counters shared by the workers of one fetch_many call."""

    def __init__(self, total_size: int, task_count: int):
        self.total_size = total_size
        self.task_count = task_count
        self.downloaded = 0
        self.completed = 0
        self.in_flight = 0
        self.max_in_flight = 0


class Downloader:
    """
    Fetches files over HTTP with bounded concurrency and live telemetry.

    Owns its aiohttp session unless one is passed in. Use as an async
    context manager or call close() when done.
    """

    def __init__(
        self,
        events: Optional[EventBus] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
        chunk_size: int = CHUNK_SIZE,
        telemetry_interval: float = TELEMETRY_INTERVAL,
    ):
        self.events = events or EventBus()
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.telemetry_interval = telemetry_interval
        self._session = session
        self._owns_session = session is None
        self._workers: List[asyncio.Task] = []
        self._cancelled = False
        self.last_batch: Optional[_Batch] = None

    async def __aenter__(self) -> "Downloader":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _client_timeout(self, timeout: Optional[float]) -> aiohttp.ClientTimeout:
        seconds = self.timeout if timeout is None else timeout
        return aiohttp.ClientTimeout(total=None, sock_connect=seconds, sock_read=seconds)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stops claiming new tasks and aborts the requests in flight."""
        self._cancelled = True
        for worker in self._workers:
            worker.cancel()

    @staticmethod
    def clamp_concurrency(requested: int, task_count: int) -> int:
        return max(1, min(requested, task_count))

    # --- Single file ---

    async def fetch_one(self, url: str, folder, filename: str) -> int:
        """Downloads one file into folder/filename and returns the number of bytes written."""
        if self._cancelled:
            raise OperationCancelled("download cancelled")
        folder = pathlib.Path(folder)
        dest_path = folder / filename
        await aiofiles.os.makedirs(folder, exist_ok=True)

        session = await self._get_session()
        downloaded = 0
        try:
            async with session.get(url, timeout=self._client_timeout(None)) as response:
                if response.status != 200:
                    raise NetworkError(url, f"HTTP {response.status} {response.reason}", response.status)
                size = response.content_length or 0
                async with aiofiles.open(dest_path, 'wb') as f:
                    async for chunk in response.content.iter_chunked(self.chunk_size):
                        downloaded += len(chunk)
                        self.events.emit(Progress(downloaded, size, filename))
                        await f.write(chunk)
        except NetworkError:
            await self._discard(dest_path)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            log.error(f"Error downloading {url}: {error}")
            await self._discard(dest_path)
            raise NetworkError(url, str(error) or type(error).__name__) from error
        return downloaded

    async def download_json(self, url: str) -> Any:
        session = await self._get_session()
        try:
            async with session.get(url, timeout=self._client_timeout(None)) as response:
                if response.status != 200:
                    raise NetworkError(url, f"HTTP {response.status} {response.reason}", response.status)
                return await response.json(content_type=None)
        except ValueError as error:
            raise NetworkError(url, f"invalid JSON: {error}") from error
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise NetworkError(url, str(error) or type(error).__name__) from error

    async def download_text(self, url: str) -> str:
        session = await self._get_session()
        try:
            async with session.get(url, timeout=self._client_timeout(None)) as response:
                if response.status != 200:
                    raise NetworkError(url, f"HTTP {response.status} {response.reason}", response.status)
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise NetworkError(url, str(error) or type(error).__name__) from error

    # --- Batch ---

    async def fetch_many(
        self,
        tasks: Sequence[DownloadTask],
        total_size: int,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Downloads every task with at most min(concurrency, len(tasks)) requests in flight.

        A failing task is reported as an Error event and does not stop the
        batch. Raises OperationCancelled if cancel() is called meanwhile.
        """
        if self._cancelled:
            raise OperationCancelled("download cancelled")
        if not tasks:
            return

        worker_count = self.clamp_concurrency(concurrency, len(tasks))
        queue: "asyncio.Queue[DownloadTask]" = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)

        batch = _Batch(total_size, len(tasks))
        self.last_batch = batch
        client_timeout = self._client_timeout(timeout)
        log.info(f"Downloading {len(tasks)} files ({total_size} bytes) with {worker_count} workers...")

        telemetry = asyncio.create_task(self._telemetry(batch))
        self._workers = [
            asyncio.create_task(self._worker(queue, batch, client_timeout))
            for _ in range(worker_count)
        ]
        try:
            await asyncio.gather(*self._workers)
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
            raise OperationCancelled("download cancelled")
        finally:
            telemetry.cancel()
            for worker in self._workers:
                worker.cancel()
            self._workers = []

        log.info(f"Download batch complete: {batch.completed}/{batch.task_count} files, {batch.downloaded} bytes.")

    async def _worker(self, queue: "asyncio.Queue[DownloadTask]", batch: _Batch, timeout: aiohttp.ClientTimeout) -> None:
        while not self._cancelled:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            batch.in_flight += 1
            batch.max_in_flight = max(batch.max_in_flight, batch.in_flight)
            try:
                await self._stream_task(task, batch, timeout)
            except NetworkError as error:
                log.error(str(error))
                await self._discard(task.path)
                self.events.emit(Error(error))
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as error:
                log.error(f"Error downloading {task.url}: {error}")
                await self._discard(task.path)
                self.events.emit(Error(NetworkError(task.url, str(error) or type(error).__name__)))
            finally:
                batch.in_flight -= 1
                batch.completed += 1

    async def _stream_task(self, task: DownloadTask, batch: _Batch, timeout: aiohttp.ClientTimeout) -> None:
        await aiofiles.os.makedirs(task.folder, exist_ok=True)
        session = await self._get_session()
        async with session.get(task.url, timeout=timeout) as response:
            if response.status != 200:
                raise NetworkError(task.url, f"HTTP {response.status} {response.reason}", response.status)
            async with aiofiles.open(task.path, 'wb') as f:
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    batch.downloaded += len(chunk)
                    self.events.emit(Progress(batch.downloaded, batch.total_size, task.label))
                    await f.write(chunk)

    async def _telemetry(self, batch: _Batch) -> None:
        speeds: "deque[float]" = deque(maxlen=SPEED_SAMPLES)
        start = time.monotonic()
        before = batch.downloaded
        while True:
            await asyncio.sleep(self.telemetry_interval)
            now = time.monotonic()
            duration = now - start
            if duration <= 0:
                continue
            speeds.append((batch.downloaded - before) / duration)
            speed = sum(speeds) / len(speeds)
            self.events.emit(Speed(speed))
            remaining = batch.total_size - batch.downloaded
            self.events.emit(Estimated(remaining / speed if speed > 0 else math.inf))
            start = now
            before = batch.downloaded

    @staticmethod
    async def _discard(path: pathlib.Path) -> None:
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError:
            pass

    # --- Availability checks ---

    async def check_url(self, url: str, timeout: Optional[float] = None) -> Optional[UrlInfo]:
        """HEAD request. Returns None (not found) unless the server answers 200."""
        session = await self._get_session()
        try:
            async with session.head(url, allow_redirects=True, timeout=self._client_timeout(timeout)) as response:
                if response.status == 200:
                    return UrlInfo(int(response.headers.get('Content-Length') or 0), response.status)
                log.debug(f"HEAD {url} answered {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            log.debug(f"HEAD {url} failed: {error}")
        return None

    async def check_mirror(self, relative_path: str, mirrors: Sequence[str]) -> Optional[MirrorHit]:
        """Tries each mirror in declared order; the first 200 wins."""
        for mirror in mirrors:
            url = f"{mirror.rstrip('/')}/{relative_path.lstrip('/')}"
            info = await self.check_url(url)
            if info is not None:
                return MirrorHit(url, info.size, info.status)
        return None
