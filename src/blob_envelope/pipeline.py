"""
Streaming transform pipeline.

This module provides:
- TransformStage: Abstract incremental byte transform (feed / finish / close)
- CompressStage, DecompressStage: gzip framing via zlib
- EncryptStage, DecryptStage: AES block cipher with PKCS7 padding
- TransformPipeline: Two chained stages behaving as one stream with a single
  terminal error
- aiter_chunks: Normalise byte sources into a bounded async chunk iterator

Stages emit output lazily, one bounded chunk at a time, so nothing is buffered
beyond the current input chunk (plus the cipher's one-block lookahead and
zlib's internal window). TransformPipeline.transform() is an async generator:
it only pulls from its source when its consumer asks for more output, which is
how a slow consumer throttles the producer.

Pipeline layouts used by the envelope protocol:
- encrypt: CompressStage -> EncryptStage
- decrypt: DecryptStage -> DecompressStage
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import zlib
from abc import ABC, abstractmethod
from contextlib import aclosing, closing
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    BinaryIO,
    Callable,
    Iterable,
    Iterator,
    Optional,
    Tuple,
    Union,
)

from .crypto import (
    BLOCK_MODE_CBC,
    SecureKey,
    aes_decrypt_cipher,
    aes_encrypt_cipher,
    pkcs7_padder,
    pkcs7_unpadder,
)
from .errors import ConfigError, EnvelopeError, PipelineTransformError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: int = 64 * 1024
DEFAULT_COMPRESSION_LEVEL: int = 6
GZIP_WBITS: int = 16 + zlib.MAX_WBITS  # gzip header and trailer, not raw/zlib

ByteSource = Union[bytes, bytearray, memoryview, BinaryIO, Iterable[bytes], AsyncIterable[bytes]]
ErrorHandler = Callable[["TransformStage", Exception, int], EnvelopeError]


# =============================================================================
# Stages
# =============================================================================


class TransformStage(ABC):
    """
    One incremental byte transform.

    feed() and finish() return iterators that must be exhausted in order;
    close() releases the underlying compressor or cipher context.
    """

    name: str = "transform"

    @abstractmethod
    def feed(self, data: bytes) -> Iterator[bytes]:
        """Transform the next piece of input."""
        ...

    @abstractmethod
    def finish(self) -> Iterator[bytes]:
        """Flush buffered output and validate the end of the stream."""
        ...

    def close(self) -> None:
        """Release resources held by the stage."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class CompressStage(TransformStage):
    """gzip compression."""

    name = "compress"

    def __init__(self, level: int = DEFAULT_COMPRESSION_LEVEL) -> None:
        if not -1 <= level <= 9:
            raise ConfigError(f"compression level must be between -1 and 9, got {level}")
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)

    def feed(self, data: bytes) -> Iterator[bytes]:
        out = self._compressor.compress(data)
        if out:
            yield out

    def finish(self) -> Iterator[bytes]:
        out = self._compressor.flush(zlib.Z_FINISH)
        if out:
            yield out

    def close(self) -> None:
        self._compressor = None


class DecompressStage(TransformStage):
    """
    gzip decompression.

    Output is yielded in pieces of at most ``max_output`` bytes so a highly
    compressed input cannot inflate into one large buffer. Concatenated gzip
    members are decoded back to back. finish() fails if the last member is
    incomplete.
    """

    name = "decompress"

    def __init__(self, max_output: int = DEFAULT_CHUNK_SIZE) -> None:
        if max_output <= 0:
            raise ConfigError("max_output must be positive")
        self._max_output = max_output
        self._decompressor = zlib.decompressobj(GZIP_WBITS)

    def feed(self, data: bytes) -> Iterator[bytes]:
        while True:
            chunk = self._decompressor.decompress(data, self._max_output)
            if chunk:
                yield chunk
            if self._decompressor.eof:
                data = self._decompressor.unused_data
                if not data:
                    return
                # another gzip member follows
                self._decompressor = zlib.decompressobj(GZIP_WBITS)
                continue
            data = self._decompressor.unconsumed_tail
            if not data and len(chunk) < self._max_output:
                return

    def finish(self) -> Iterator[bytes]:
        chunk = self._decompressor.flush()
        if chunk:
            yield chunk
        if not self._decompressor.eof:
            raise zlib.error("unexpected end of compressed stream")

    def close(self) -> None:
        self._decompressor = None


class EncryptStage(TransformStage):
    """AES encryption (CBC by default) with PKCS7 padding."""

    name = "encrypt"

    def __init__(
        self,
        key: bytes | bytearray | SecureKey,
        iv: bytes,
        block_mode: str = BLOCK_MODE_CBC,
    ) -> None:
        self._cipher = aes_encrypt_cipher(block_mode, key, iv)
        self._padder = pkcs7_padder()

    def feed(self, data: bytes) -> Iterator[bytes]:
        out = self._cipher.update(self._padder.update(data))
        if out:
            yield out

    def finish(self) -> Iterator[bytes]:
        out = self._cipher.update(self._padder.finalize()) + self._cipher.finalize()
        if out:
            yield out

    def close(self) -> None:
        self._cipher = None
        self._padder = None


class DecryptStage(TransformStage):
    """AES decryption (CBC by default) removing PKCS7 padding."""

    name = "decrypt"

    def __init__(
        self,
        key: bytes | bytearray | SecureKey,
        iv: bytes,
        block_mode: str = BLOCK_MODE_CBC,
    ) -> None:
        self._cipher = aes_decrypt_cipher(block_mode, key, iv)
        self._unpadder = pkcs7_unpadder()

    def feed(self, data: bytes) -> Iterator[bytes]:
        out = self._unpadder.update(self._cipher.update(data))
        if out:
            yield out

    def finish(self) -> Iterator[bytes]:
        # finalize() rejects input that is not a whole number of blocks,
        # the unpadder rejects a bad final block.
        out = self._unpadder.update(self._cipher.finalize()) + self._unpadder.finalize()
        if out:
            yield out

    def close(self) -> None:
        self._cipher = None
        self._unpadder = None


# =============================================================================
# Pipeline
# =============================================================================


def transform_error(stage: TransformStage, exc: Exception, bytes_out: int) -> EnvelopeError:
    """Default error handler: every stage failure is a PipelineTransformError."""
    return PipelineTransformError(f"{stage.name} stage failed: {exc}")


class TransformPipeline:
    """
    Two stages chained into one logical stream.

    The output of ``first`` is fed to ``second`` in the order it is produced.
    The first failure in either stage is classified by ``error_handler``,
    stored in ``error``, releases both stages and is raised; every later call
    raises the same error.
    """

    _OPEN = "open"
    _FINISHING = "finishing"
    _FINISHED = "finished"
    _FAILED = "failed"
    _CLOSED = "closed"

    def __init__(
        self,
        first: TransformStage,
        second: TransformStage,
        *,
        name: str = "pipeline",
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        self._first = first
        self._second = second
        self.name = name
        self._error_handler = error_handler or transform_error
        self._state = self._OPEN
        self._error: Optional[EnvelopeError] = None
        self._busy = False
        self._bytes_in = 0
        self._bytes_out = 0

    @property
    def stages(self) -> Tuple[TransformStage, TransformStage]:
        return (self._first, self._second)

    @property
    def error(self) -> Optional[EnvelopeError]:
        """Terminal error, if the pipeline failed."""
        return self._error

    @property
    def bytes_in(self) -> int:
        return self._bytes_in

    @property
    def bytes_out(self) -> int:
        return self._bytes_out

    @property
    def finished(self) -> bool:
        return self._state == self._FINISHED

    @property
    def closed(self) -> bool:
        return self._state in (self._FINISHED, self._FAILED, self._CLOSED)

    # ------------------------------------------------------------------
    # Synchronous interface
    # ------------------------------------------------------------------

    def feed(self, data: bytes | bytearray | memoryview) -> Iterator[bytes]:
        """
        Push input through both stages.

        Returns a lazy iterator over the transformed output; it must be
        exhausted before the next feed() or finish(). Abandoning it part-way
        cancels the pipeline.

        Raises:
            PipelineTransformError: If the pipeline is finished, closed or a
                previous output iterator is still pending
            EnvelopeError: The terminal error of a failed pipeline
        """
        self._check_ready()
        data = bytes(data)
        self._bytes_in += len(data)
        self._busy = True
        return self._drive(self._chain(data), final=False)

    def finish(self) -> Iterator[bytes]:
        """
        Signal end of input; returns an iterator over the remaining output.

        Once exhausted the pipeline is finished and its stages are released.
        """
        self._check_ready()
        self._state = self._FINISHING
        self._busy = True
        return self._drive(self._chain_finish(), final=True)

    def close(self) -> None:
        """Release both stages. Safe to call at any point, more than once."""
        if self.closed:
            return
        logger.debug("%s closed before completion after %d bytes in", self.name, self._bytes_in)
        self._state = self._CLOSED
        self._release()

    def _check_ready(self) -> None:
        if self._state == self._FAILED:
            raise self._error
        if self._state in (self._FINISHING, self._FINISHED):
            raise PipelineTransformError(f"{self.name} already finished")
        if self._state == self._CLOSED:
            raise PipelineTransformError(f"{self.name} is closed")
        if self._busy:
            raise PipelineTransformError(f"{self.name} has unconsumed output")

    def _chain(self, data: bytes) -> Iterator[bytes]:
        for chunk in self._guard(self._first, self._first.feed(data)):
            yield from self._guard(self._second, self._second.feed(chunk))

    def _chain_finish(self) -> Iterator[bytes]:
        for chunk in self._guard(self._first, self._first.finish()):
            yield from self._guard(self._second, self._second.feed(chunk))
        yield from self._guard(self._second, self._second.finish())

    def _guard(self, stage: TransformStage, chunks: Iterator[bytes]) -> Iterator[bytes]:
        try:
            yield from chunks
        except EnvelopeError as exc:
            raise self._fail(stage, exc)
        except Exception as exc:
            raise self._fail(stage, exc) from exc

    def _drive(self, chunks: Iterator[bytes], final: bool) -> Iterator[bytes]:
        completed = False
        try:
            for chunk in chunks:
                self._bytes_out += len(chunk)
                yield chunk
            completed = True
        finally:
            self._busy = False
            if completed and final:
                self._state = self._FINISHED
                self._release()
                logger.debug(
                    "%s finished: %d bytes in, %d bytes out",
                    self.name,
                    self._bytes_in,
                    self._bytes_out,
                )
            elif not completed:
                # consumer stopped early or a stage failed
                self.close()

    def _fail(self, stage: TransformStage, exc: Exception) -> EnvelopeError:
        if self._error is not None:
            return self._error
        error = exc if isinstance(exc, EnvelopeError) else self._error_handler(stage, exc, self._bytes_out)
        self._error = error
        self._state = self._FAILED
        self._release()
        logger.warning(
            "%s failed in %s stage after %d bytes out: %s",
            self.name,
            stage.name,
            self._bytes_out,
            type(error).__name__,
        )
        return error

    def _release(self) -> None:
        self._first.close()
        self._second.close()

    # ------------------------------------------------------------------
    # Asynchronous interface
    # ------------------------------------------------------------------

    async def transform(
        self,
        source: ByteSource,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """
        Stream ``source`` through the pipeline.

        Async generator: input is pulled one chunk at a time, only when the
        consumer asks for output. Closing the generator, or an error on either
        side, closes the pipeline and the source.

        Args:
            source: bytes, binary file object, iterable or async iterable
            chunk_size: Maximum size of each input chunk

        Yields:
            Transformed chunks in order
        """
        async with aclosing(aiter_chunks(source, chunk_size)) as chunks:
            try:
                async for data in chunks:
                    with closing(self.feed(data)) as outputs:
                        for out in outputs:
                            yield out
                    # yield control between input chunks
                    await asyncio.sleep(0)
                with closing(self.finish()) as outputs:
                    for out in outputs:
                        yield out
            finally:
                self.close()

    async def pipe(
        self,
        source: ByteSource,
        sink: Any,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> int:
        """
        Stream ``source`` through the pipeline into ``sink``.

        Args:
            source: Any source accepted by transform()
            sink: Object with a (sync or async) ``write`` method, or a callable
            chunk_size: Maximum size of each input chunk

        Returns:
            Number of bytes written to the sink
        """
        written = 0
        async with aclosing(self.transform(source, chunk_size)) as chunks:
            async for chunk in chunks:
                await write_to(sink, chunk)
                written += len(chunk)
        return written

    def __repr__(self) -> str:
        return f"TransformPipeline({self.name!r}, {self._first!r} -> {self._second!r}, state={self._state})"


# =============================================================================
# Sources and sinks
# =============================================================================


def _split(data: bytes | bytearray | memoryview, chunk_size: int) -> Iterator[bytes]:
    view = memoryview(data)
    for offset in range(0, len(view), chunk_size):
        yield bytes(view[offset : offset + chunk_size])


async def aiter_chunks(source: ByteSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """
    Iterate ``source`` as bytes chunks of at most ``chunk_size``.

    Supported sources: bytes-like objects, objects with a sync or async
    ``read(n)`` method, iterables and async iterables of bytes-like items.
    Generators and async generators passed in are closed when iteration
    stops; file objects are left open for their owner.
    """
    if chunk_size <= 0:
        raise ConfigError("chunk_size must be positive")

    if isinstance(source, (bytes, bytearray, memoryview)):
        for piece in _split(source, chunk_size):
            yield piece
        return

    if hasattr(source, "read"):
        while True:
            data = source.read(chunk_size)
            if inspect.isawaitable(data):
                data = await data
            if not data:
                return
            yield bytes(data)

    if hasattr(source, "__aiter__"):
        try:
            async for item in source:
                for piece in _split(item, chunk_size):
                    yield piece
        finally:
            if inspect.isasyncgen(source):
                await source.aclose()
        return

    iterator = iter(source)
    try:
        for item in iterator:
            for piece in _split(item, chunk_size):
                yield piece
    finally:
        if inspect.isgenerator(iterator):
            iterator.close()


async def write_to(sink: Any, data: bytes) -> None:
    """Write to a sink exposing a sync/async ``write`` method, or to a callable."""
    writer = getattr(sink, "write", sink)
    result = writer(data)
    if inspect.isawaitable(result):
        await result
