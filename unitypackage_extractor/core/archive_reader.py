# Copyright 2026 Cisco Systems, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""
Streaming reader for ``.unitypackage`` archives.

A Unity package is a gzip-compressed tar stream whose members are laid out as
``<guid>/asset``, ``<guid>/asset.meta``, ``<guid>/pathname`` and optionally
``<guid>/preview.png``. The reader decodes the stream once, front to back,
without buffering the archive, and watches the ratio between compressed input
and decompressed output on every read so that decompression bombs are caught
while they inflate rather than after the fact.
"""

import gzip
import logging
import tarfile
import zlib
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, BinaryIO

from .exceptions import ArchiveCorruptError, DecompressionBombSuspectedError, UnsupportedPackageFormatError
from .models import MIB

logger = logging.getLogger(__name__)

HEADER_PROBE_SIZE = 512
DEFAULT_MAX_COMPRESSION_RATIO = 100.0
DEFAULT_MIN_BOMB_CHECK_BYTES = 1 * MIB


class PackageFormat(str, Enum):
    """Container formats recognised from the file header."""

    GZIP_TAR = "gzip_tar"
    TAR = "tar"
    ZIP = "zip"
    RAR = "rar"
    SEVEN_ZIP = "7z"
    UNITY_FS = "unityfs"
    TOO_SMALL = "too_small"
    UNKNOWN = "unknown"


SUPPORTED_FORMATS = frozenset({PackageFormat.GZIP_TAR, PackageFormat.TAR})


def detect_package_format(header: bytes) -> PackageFormat:
    """Identify the container format from the first bytes of a file."""
    if header[:2] == b"\x1f\x8b":
        return PackageFormat.GZIP_TAR
    if header[:2] == b"PK":
        return PackageFormat.ZIP
    if header[:4] == b"Rar!":
        return PackageFormat.RAR
    if header[:6] == b"7z\xbc\xaf\x27\x1c":
        return PackageFormat.SEVEN_ZIP
    if header[:7] == b"UnityFS":
        return PackageFormat.UNITY_FS
    if len(header) < HEADER_PROBE_SIZE:
        return PackageFormat.TOO_SMALL
    if header[257:262] == b"ustar":
        return PackageFormat.TAR
    return PackageFormat.UNKNOWN


def split_entry_name(name: str) -> tuple[str, str]:
    """Split ``<guid>/<component>`` into the GUID and the lower-cased component.

    Returns an empty component for members that sit directly at the root.
    """
    cleaned = name.replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    cleaned = cleaned.lstrip("/")
    guid, _, component = cleaned.partition("/")
    return guid, component.strip("/").lower()


_DECODE_ERRORS = (tarfile.TarError, gzip.BadGzipFile, EOFError, zlib.error)


class _EntryStream:
    """Member data stream that reports framing failures as ``ArchiveCorruptError``.

    Member content is pulled by the consumer, outside the reader's own
    iteration, so decode failures surface here rather than in ``entries()``.
    """

    def __init__(self, inner: IO[bytes]):
        self._inner = inner

    def read(self, size: int = -1) -> bytes:
        try:
            return self._inner.read(size)
        except _DECODE_ERRORS as e:
            raise ArchiveCorruptError(f"Archive is corrupt or truncated: {e}") from e


@dataclass
class RawArchiveEntry:
    """A regular-file member of the tar stream.

    ``stream`` is only readable until the next entry is requested from the
    reader; the underlying tar stream cannot seek backwards.
    """

    path: str
    guid: str
    component: str
    size: int
    stream: _EntryStream

    def read(self, size: int = -1) -> bytes:
        return self.stream.read(size)


class _ReplayReader:
    """Serves the already-probed header bytes before continuing with the source."""

    def __init__(self, prefix: bytes, source: BinaryIO):
        self._prefix = prefix
        self._source = source
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        if self._prefix:
            if size is None or size < 0:
                data = self._prefix + self._source.read()
                self._prefix = b""
            else:
                data = self._prefix[:size]
                self._prefix = self._prefix[size:]
                if len(data) < size:
                    data += self._source.read(size - len(data))
        else:
            data = self._source.read(size)
        self.bytes_read += len(data)
        return data


class _RatioGuard:
    """File-like wrapper that raises as soon as the inflation ratio is exceeded."""

    def __init__(
        self,
        decompressed: IO[bytes],
        compressed: _ReplayReader,
        max_ratio: float,
        min_check_bytes: int,
    ):
        self._decompressed = decompressed
        self._compressed = compressed
        self.max_ratio = max_ratio
        self.min_check_bytes = min_check_bytes
        self.bytes_out = 0

    def read(self, size: int = -1) -> bytes:
        data = self._decompressed.read(size)
        self.bytes_out += len(data)
        if self.bytes_out >= self.min_check_bytes:
            compressed = max(self._compressed.bytes_read, 1)
            if self.bytes_out > self.max_ratio * compressed:
                raise DecompressionBombSuspectedError(self.bytes_out, compressed, self.max_ratio)
        return data


class ArchiveReader:
    """Lazily enumerates the regular-file members of a Unity package.

    Example:
        >>> reader = ArchiveReader("Pack.unitypackage")
        >>> for entry in reader.entries():
        ...     print(entry.guid, entry.component, entry.size)

    Each call to ``entries()`` decodes the source from the start; a stream
    source can only be enumerated once.
    """

    def __init__(
        self,
        source: str | Path | BinaryIO,
        max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
        min_bomb_check_bytes: int = DEFAULT_MIN_BOMB_CHECK_BYTES,
    ):
        self.source = source
        if not max_compression_ratio or max_compression_ratio <= 0:
            max_compression_ratio = DEFAULT_MAX_COMPRESSION_RATIO
        self.max_compression_ratio = max_compression_ratio
        self.min_bomb_check_bytes = max(0, min_bomb_check_bytes)
        self.detected_format: PackageFormat | None = None
        self.entries_read = 0
        self.entries_skipped = 0
        self.compressed_bytes = 0
        self.decompressed_bytes = 0

    def entries(self) -> Iterator[RawArchiveEntry]:
        """Yield the archive's regular files in archive order.

        Raises:
            UnsupportedPackageFormatError: if the header is not gzip or tar
            ArchiveCorruptError: on malformed gzip or tar framing
            DecompressionBombSuspectedError: if the inflation ratio is exceeded
        """
        if isinstance(self.source, (str, Path)):
            with open(self.source, "rb") as fh:
                yield from self._iter_stream(fh)
        else:
            yield from self._iter_stream(self.source)

    def _iter_stream(self, raw: BinaryIO) -> Iterator[RawArchiveEntry]:
        header = raw.read(HEADER_PROBE_SIZE)
        fmt = detect_package_format(header)
        self.detected_format = fmt
        if fmt not in SUPPORTED_FORMATS:
            logger.warning("Unsupported package format detected: %s", fmt.value)
            raise UnsupportedPackageFormatError(fmt.value, _format_message(fmt))

        counting = _ReplayReader(header, raw)
        guard: _RatioGuard | None = None
        payload: IO[bytes] | _ReplayReader
        if fmt == PackageFormat.GZIP_TAR:
            gz = gzip.GzipFile(fileobj=counting, mode="rb")  # type: ignore[arg-type]
            guard = _RatioGuard(gz, counting, self.max_compression_ratio, self.min_bomb_check_bytes)
            payload = guard  # type: ignore[assignment]
        else:
            payload = counting

        try:
            with tarfile.open(fileobj=payload, mode="r|") as tar:  # type: ignore[call-overload]
                for member in tar:
                    self._update_counters(counting, guard)
                    if not member.isreg():
                        self.entries_skipped += 1
                        logger.debug("Skipping non-regular member: %s (type=%r)", member.name, member.type)
                        continue

                    guid, component = split_entry_name(member.name)
                    stream = tar.extractfile(member)
                    if stream is None:
                        self.entries_skipped += 1
                        continue

                    self.entries_read += 1
                    yield RawArchiveEntry(
                        path=f"{guid}/{component}" if component else guid,
                        guid=guid,
                        component=component,
                        size=member.size,
                        stream=_EntryStream(stream),
                    )
        except DecompressionBombSuspectedError:
            self._update_counters(counting, guard)
            logger.warning(
                "Decompression bomb suspected | compressed=%d | decompressed=%d | max_ratio=%.1f",
                self.compressed_bytes,
                self.decompressed_bytes,
                self.max_compression_ratio,
            )
            raise
        except _DECODE_ERRORS as e:
            self._update_counters(counting, guard)
            raise ArchiveCorruptError(f"Archive is corrupt or truncated: {e}") from e

        self._update_counters(counting, guard)
        logger.debug(
            "Archive decoded | entries=%d | skipped=%d | compressed=%d | decompressed=%d",
            self.entries_read,
            self.entries_skipped,
            self.compressed_bytes,
            self.decompressed_bytes,
        )

    def _update_counters(self, counting: _ReplayReader, guard: _RatioGuard | None) -> None:
        self.compressed_bytes = counting.bytes_read
        self.decompressed_bytes = guard.bytes_out if guard is not None else counting.bytes_read


def _format_message(fmt: PackageFormat) -> str:
    if fmt == PackageFormat.TOO_SMALL:
        return "File is too small to be a Unity package"
    if fmt == PackageFormat.UNITY_FS:
        return "File is a UnityFS asset bundle, not a .unitypackage"
    if fmt == PackageFormat.UNKNOWN:
        return "File is not a gzip-compressed tar archive"
    return f"File is a {fmt.value} archive, not a .unitypackage"


def probe_package_format(path: str | Path) -> PackageFormat:
    """Read the header of *path* and return its detected format."""
    with open(path, "rb") as fh:
        return detect_package_format(fh.read(HEADER_PROBE_SIZE))
