"""Microphone capture as an asynchronous chunk stream.

The PortAudio callback runs on its own thread. Each captured block is handed
to the event loop with ``call_soon_threadsafe`` and placed on a bounded
queue, so capture timing never waits on network sends. When the queue is
full the block is dropped: capture is lossy-tolerant.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

import numpy as np

from gemini_live.audio.packetizer import (
    DEFAULT_FORMAT,
    AudioChunk,
    AudioChunkPacketizer,
    AudioFormat,
)

logger = logging.getLogger(__name__)

LevelObserver = Callable[[float], None]
StreamFactory = Callable[..., Any]


class AudioSource(ABC):
    """Base class for sources of captured PCM audio."""

    @abstractmethod
    def start(self) -> None:
        """Begin capturing. Must be called from the running event loop."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop capturing. ``chunks()`` ends once queued chunks are drained."""
        pass

    @abstractmethod
    def chunks(self) -> AsyncIterator[AudioChunk]:
        """Yield captured chunks in capture order until stopped."""
        pass

    @property
    @abstractmethod
    def is_recording(self) -> bool:
        """Check if capture is active."""
        pass


def _default_stream_factory(**kwargs: Any) -> Any:
    # Imported lazily: PortAudio is only needed when the microphone is used
    import sounddevice as sd

    return sd.InputStream(**kwargs)


def compute_rms_level(samples: np.ndarray) -> float:
    """Compute the RMS level of int16 samples, normalized to [0, 1]."""
    if samples.size == 0:
        return 0.0
    normalized = samples.astype(np.float32) / 32768.0
    return float(np.sqrt(np.mean(np.square(normalized))))


class MicrophoneSource(AudioSource):
    """Captures 16-bit PCM from an input device via sounddevice."""

    def __init__(
        self,
        audio_format: AudioFormat = DEFAULT_FORMAT,
        block_ms: int = 100,
        queue_size: int = 50,
        device: str | int | None = None,
        level_observer: LevelObserver | None = None,
        stream_factory: StreamFactory | None = None,
    ) -> None:
        """Initialize microphone source.

        Args:
            audio_format: Capture format (must be 16-bit)
            block_ms: Capture block duration in milliseconds
            queue_size: Maximum blocks buffered before dropping
            device: Optional input device name or index
            level_observer: Optional callback receiving each block's RMS level
            stream_factory: Factory for the input stream (default: sounddevice.InputStream)
        """
        if audio_format.bit_depth != 16:
            raise ValueError(f"Only 16-bit capture is supported, got {audio_format.bit_depth}")

        self.format = audio_format
        self.block_ms = block_ms
        self.device = device
        self.dropped_blocks = 0

        self._queue_size = queue_size
        self._level_observer = level_observer
        self._stream_factory = stream_factory or _default_stream_factory
        self._packetizer = AudioChunkPacketizer(audio_format)

        self._queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue(maxsize=queue_size)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: Any = None
        self._stopped = True

    @property
    def is_recording(self) -> bool:
        """Check if capture is active."""
        return self._stream is not None and not self._stopped

    def start(self) -> None:
        """Open and start the input stream.

        Raises:
            RuntimeError: If already recording or called outside an event loop
        """
        if self.is_recording:
            raise RuntimeError("Microphone is already recording")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._packetizer.reset()
        self.dropped_blocks = 0

        self._stream = self._stream_factory(
            samplerate=self.format.sample_rate,
            channels=self.format.channels,
            dtype="int16",
            blocksize=self.format.frames_for_ms(self.block_ms),
            device=self.device,
            callback=self._callback,
        )
        self._stopped = False
        self._stream.start()

        logger.info(
            "Microphone capture started",
            extra={
                "sample_rate": self.format.sample_rate,
                "channels": self.format.channels,
                "block_ms": self.block_ms,
                "device": self.device,
            },
        )

    def stop(self) -> None:
        """Stop and close the input stream.

        Must be called from the event loop thread; wakes a waiting
        ``chunks()`` consumer.
        """
        if self._stopped:
            return

        self._stopped = True
        stream = self._stream
        self._stream = None

        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.warning("Error closing input stream", extra={"error": str(e)})

        # End-of-capture marker; a full queue ends on the empty check instead
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(None)

        logger.info(
            "Microphone capture stopped",
            extra={
                "chunks": self._packetizer.current_sequence,
                "dropped_blocks": self.dropped_blocks,
            },
        )

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        """PortAudio callback; runs on the audio thread."""
        if status:
            logger.warning("Microphone status", extra={"status": str(status)})

        loop = self._loop
        if loop is None or loop.is_closed():
            return

        try:
            loop.call_soon_threadsafe(self._enqueue, indata.copy())
        except RuntimeError:
            # Loop closed between the check and the call
            pass

    def _enqueue(self, block: np.ndarray) -> None:
        """Queue a captured block; runs on the event loop."""
        if self._stopped:
            return

        if self._level_observer is not None:
            try:
                self._level_observer(compute_rms_level(block))
            except Exception as e:
                logger.debug("Level observer failed", extra={"error": str(e)})

        try:
            self._queue.put_nowait(block)
        except asyncio.QueueFull:
            self.dropped_blocks += 1
            logger.warning(
                "Capture queue full, dropping block",
                extra={"dropped_blocks": self.dropped_blocks},
            )

    async def chunks(self) -> AsyncIterator[AudioChunk]:
        """Yield captured chunks until stopped and drained."""
        while True:
            if self._stopped and self._queue.empty():
                return

            block = await self._queue.get()
            if block is None:
                return

            data = block.tobytes()
            if not data:
                continue
            yield self._packetizer.packetize(data)
