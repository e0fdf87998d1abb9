#!/usr/bin/env python3
"""
Byte tokenizer.

Splits a byte stream into records: fixed-size binary labels for tagged
binary formats, and CR/LF terminated lines for ASCII formats. A binary
label that fails validation triggers a byte-by-byte search for the next
valid label instead of aborting the stream.
"""

import logging
import re
import struct
from typing import BinaryIO, Callable, Iterable, List, Optional, Tuple

from .errors import ShortRead
from .records import ResyncEvent

DEFAULT_MAX_SEARCH = 1024 * 1024  # Search up to 1MB before giving up

_FIELD = re.compile(r'"([^"]*)"|(\S+)')


def split_fields(text: str) -> List[str]:
    """
    Split a line on whitespace, keeping double-quoted strings together.

    Quotes are removed from quoted fields; an empty quoted string yields ''.
    """
    return [bare if bare else quoted for quoted, bare in _FIELD.findall(text)]


class ByteSource:
    """
    Sequential byte source over a binary file object.

    Keeps its own position count so it works on non-seekable streams, and
    supports pushing bytes back for the next read.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self._pushback = bytearray()
        self._position = 0

    def read(self, size: int) -> bytes:
        """Read up to size bytes; fewer only at end of stream."""
        data = bytearray()
        if self._pushback:
            data += self._pushback[:size]
            del self._pushback[:size]
        while len(data) < size:
            chunk = self.stream.read(size - len(data))
            if not chunk:
                break
            data += chunk
        self._position += len(data)
        return bytes(data)

    def read_exact(self, size: int, tag: str = '') -> bytes:
        """
        Read exactly size bytes.

        Raises:
            ShortRead: If the stream ends first
        """
        data = self.read(size)
        if len(data) != size:
            raise ShortRead(size, len(data), tag)
        return data

    def read_line(self) -> bytes:
        """Read up to and including the next LF; empty bytes at end of stream."""
        line = bytearray()
        if self._pushback:
            index = self._pushback.find(b'\n')
            if index >= 0:
                line += self._pushback[:index + 1]
                del self._pushback[:index + 1]
                self._position += len(line)
                return bytes(line)
            line += self._pushback
            self._pushback.clear()
        line += self.stream.readline()
        self._position += len(line)
        return bytes(line)

    def unread(self, data: bytes):
        """Push bytes back so the next read returns them first."""
        self._pushback[:0] = data
        self._position -= len(data)

    def tell(self) -> int:
        return self._position


def _default_type(label: bytes) -> int:
    return struct.unpack('>H', label[:2])[0]


class LabelTokenizer:
    """
    Finds fixed-size record labels in a binary stream.

    Args:
        source: ByteSource to read from
        label_size: Label window size in bytes
        validate: Returns True for a recognised label
        known_skips: Skip counts that are expected alignment padding, not corruption
        type_of: Extracts the record type code from a label
        max_search: Bytes searched for a valid label before giving up
    """

    def __init__(self, source: ByteSource, label_size: int,
                 validate: Callable[[bytes], bool],
                 known_skips: Iterable[int] = (),
                 type_of: Callable[[bytes], int] = _default_type,
                 max_search: int = DEFAULT_MAX_SEARCH):
        self.source = source
        self.label_size = label_size
        self.validate = validate
        self.known_skips = set(known_skips)
        self.type_of = type_of
        self.max_search = max_search
        self.last_type: Optional[int] = None
        self.total_skipped = 0
        self.logger = logging.getLogger('LabelTokenizer')

    def next_label(self) -> Optional[Tuple[bytes, int, Optional[ResyncEvent]]]:
        """
        Read the next valid label.

        Returns:
            (label, skipped, event) where event is a ResyncEvent for an
            unexpected skip and None otherwise, or None at end of stream
        """
        start = self.source.tell()
        window = bytearray(self.source.read(self.label_size))
        if len(window) < self.label_size:
            if window:
                self.logger.debug(f"Ignoring {len(window)} trailing bytes at end of stream")
            return None

        skipped = 0
        while not self.validate(bytes(window)):
            if skipped == 0:
                self.logger.debug(f"Lost sync at byte {start} - searching for next label...")
            if skipped >= self.max_search:
                self.logger.error(f"Resync failed - no valid label found in {self.max_search} bytes")
                return None
            byte = self.source.read(1)
            if not byte:
                self.logger.warning(f"End of stream during resync after {skipped} bytes")
                return None
            del window[0]
            window += byte
            skipped += 1

        label = bytes(window)
        type_after = self.type_of(label)
        event = None
        if skipped > 0 and skipped not in self.known_skips:
            event = ResyncEvent(skipped=skipped, type_before=self.last_type,
                                type_after=type_after, position=start)
            self.total_skipped += skipped
            self.logger.warning(f"Resync successful - skipped {skipped} bytes at {start} "
                                f"(type before {self.last_type!r}, after {type_after:#06x})")
        self.last_type = type_after
        return (label, skipped, event)


class LineTokenizer:
    """
    Reads CR/LF terminated ASCII lines with one line of push-back.

    Lines are decoded as latin-1 so any byte value survives a round trip.
    """

    def __init__(self, source: ByteSource):
        self.source = source
        self.line_number = 0
        self._buffered: Optional[str] = None

    @property
    def has_buffered(self) -> bool:
        return self._buffered is not None

    def push_back(self, line: str):
        """Keep a line to be returned by the next next_line() call."""
        if self._buffered is not None:
            raise RuntimeError("Only one line can be pushed back")
        self._buffered = line
        self.line_number -= 1

    def next_line(self) -> Optional[str]:
        """Next line without its terminator, or None at end of stream."""
        if self._buffered is not None:
            line = self._buffered
            self._buffered = None
            self.line_number += 1
            return line

        data = self.source.read_line()
        if not data:
            return None
        self.line_number += 1
        return data.decode('latin-1').rstrip('\r\n')
