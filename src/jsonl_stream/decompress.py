"""Streaming gzip decompression with magic-byte detection."""

from __future__ import annotations

import logging
import zlib
from urllib.parse import urlsplit

from .exceptions import DecompressionError
from .models import Compression

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
GZIP_CONTENT_TYPES = frozenset({"application/gzip", "application/x-gzip"})
GZIP_SUFFIXES = (".gz", ".gzip")
GZIP_CODINGS = frozenset({"gzip", "x-gzip"})


def looks_gzipped(
    url: str,
    content_type: str | None = None,
    content_encoding: str | None = None,
) -> bool:
    """Guess gzip from the headers or URL path, without reading any body.

    Used when a stream resumes mid-resource and the magic bytes are not
    available for sniffing.
    """
    if content_encoding:
        codings = content_encoding.lower().replace(" ", "").split(",")
        if GZIP_CODINGS.intersection(codings):
            return True
    if content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type in GZIP_CONTENT_TYPES:
            return True
    return urlsplit(url).path.lower().endswith(GZIP_SUFFIXES)


class StreamDecoder:
    """Byte transform between the fetcher and the line framer.

    ``"none"`` passes bytes through, ``"gzip"`` inflates them, and ``"auto"``
    holds back data until the first two bytes are known, then behaves as
    ``"gzip"`` if they are the gzip magic number and ``"none"`` otherwise.
    Concatenated gzip members are inflated one after another.
    """

    def __init__(self, mode: Compression = "auto") -> None:
        if mode not in ("auto", "gzip", "none"):
            raise ValueError(f"Unknown compression mode: {mode!r}")
        self._mode = mode
        self._sniff = bytearray()
        self._member_open = False
        self._inflater = self._new_inflater() if mode == "gzip" else None

    @property
    def is_gzip(self) -> bool | None:
        """Whether input is gzip; None while ``"auto"`` is still sniffing."""
        if self._mode == "auto":
            return None
        return self._mode == "gzip"

    def feed(self, chunk: bytes) -> bytes:
        """Transform one chunk; may return b"" while data is held back."""
        if self._mode == "auto":
            self._sniff += chunk
            if len(self._sniff) < len(GZIP_MAGIC):
                return b""
            chunk = self._decide()
        if self._mode == "none":
            return chunk
        return self._inflate(chunk)

    def finish(self) -> bytes:
        """Flush remaining output at end of input.

        Raises:
            DecompressionError: If the gzip data ends inside a member
        """
        if self._mode == "auto":
            # Too short to carry a gzip header, so it is plain text
            return self._decide()
        if self._mode == "none":
            return b""

        assert self._inflater is not None
        tail = self._inflater.flush()
        if self._member_open:
            raise DecompressionError("Gzip stream is truncated")
        return tail

    def _decide(self) -> bytes:
        data = bytes(self._sniff)
        self._sniff.clear()
        if data.startswith(GZIP_MAGIC):
            logger.debug("Detected gzip magic bytes")
            self._mode = "gzip"
            self._inflater = self._new_inflater()
            return data
        self._mode = "none"
        return data

    def _new_inflater(self) -> "zlib._Decompress":
        # Nothing consumed for the current member yet
        self._member_open = False
        return zlib.decompressobj(16 + zlib.MAX_WBITS)

    def _inflate(self, chunk: bytes) -> bytes:
        assert self._inflater is not None
        out = bytearray()
        while chunk:
            try:
                out += self._inflater.decompress(chunk)
            except zlib.error as e:
                raise DecompressionError(f"Invalid gzip data: {e}") from e
            self._member_open = not self._inflater.eof
            if not self._inflater.eof:
                break
            # End of member: anything left over starts the next one
            chunk = self._inflater.unused_data
            self._inflater = self._new_inflater()
            if chunk and not chunk.startswith(GZIP_MAGIC[: len(chunk)]):
                raise DecompressionError("Trailing garbage after gzip member")
        return bytes(out)
