from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)

ERROR_MARKER = "\n\n[Error: Failed to complete response]"


class TurnSink(ABC):
    """Write side of one chat turn, as seen by the pipeline."""

    @abstractmethod
    async def write(self, text: str) -> None:
        ...

    @abstractmethod
    async def fail(self, error: BaseException) -> None:
        """Report a generation failure. Before the first write this turns the
        whole response into an error; afterwards it appends an in-band marker."""

    @abstractmethod
    async def close(self) -> None:
        ...


class StreamingTransport(TurnSink):
    """Bridges a pipeline task to a chunked HTTP body.

    The response is "opened" by the first write (or by close, for an empty
    reply). Until then nothing is committed, so an early ``fail`` can still be
    answered with an error status. Fragments are handed to ``body()`` one by
    one as they arrive.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._opened: "asyncio.Future[Optional[BaseException]]" = (
            asyncio.get_running_loop().create_future()
        )
        self._closed = False
        self._disconnected = False

    @property
    def started(self) -> bool:
        return self._opened.done() and self._opened.result() is None

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def _open(self) -> None:
        if not self._opened.done():
            self._opened.set_result(None)

    async def write(self, text: str) -> None:
        if self._closed or self._disconnected:
            return
        self._open()
        self._queue.put_nowait(text)

    async def fail(self, error: BaseException) -> None:
        if self._closed:
            return
        if not self._opened.done():
            self._opened.set_result(error)
            self._closed = True
            return
        if not self._disconnected:
            self._queue.put_nowait(ERROR_MARKER)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._open()
        self._queue.put_nowait(None)

    async def wait_opened(self) -> Optional[BaseException]:
        """Wait until the response can be committed.

        Returns None when streaming should start, or the error passed to a
        ``fail`` that happened before any fragment.
        """
        return await asyncio.shield(self._opened)

    async def body(self) -> AsyncIterator[str]:
        try:
            while True:
                item = await self._queue.get()
                if item is None:
                    break
                yield item
        finally:
            if not self._closed:
                logger.debug("Client disconnected before the reply finished")
            self._disconnected = True
