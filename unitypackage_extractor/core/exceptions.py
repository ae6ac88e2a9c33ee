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

"""Unity Package Extractor exceptions.

This module defines the typed failures raised while reading, assembling and
writing a ``.unitypackage``. All exceptions inherit from UnityPackageError
for easy catching.

Example:
    >>> from unitypackage_extractor.core.extractor import UnityPackageExtractor
    >>> from unitypackage_extractor.core.exceptions import ArchiveCorruptError, LimitExceededError
    >>>
    >>> extractor = UnityPackageExtractor()
    >>>
    >>> try:
    ...     result = extractor.extract("pack.unitypackage", "out/")
    ... except ArchiveCorruptError as e:
    ...     print(f"Package is damaged: {e}")
    ... except LimitExceededError as e:
    ...     print(f"Package too large: {e.kind.value}")
"""

from .models import IOFailureKind, LimitKind


class UnityPackageError(Exception):
    """Base exception for all Unity Package Extractor errors."""

    pass


class ArchiveCorruptError(UnityPackageError):
    """Raised when the archive cannot be decoded.

    This can indicate:
    - Bad gzip magic or a truncated deflate stream
    - CRC mismatch
    - Invalid tar headers
    """

    pass


class UnsupportedPackageFormatError(ArchiveCorruptError):
    """Raised when the file is a different container format (zip, rar, 7z, UnityFS bundle)."""

    def __init__(self, detected_format: str, message: str | None = None):
        self.detected_format = detected_format
        super().__init__(message or f"Unsupported package format: {detected_format}")


class DecompressionBombSuspectedError(UnityPackageError):
    """Raised when decompressed output outgrows the compressed input by more than the allowed ratio."""

    def __init__(self, decompressed_bytes: int, compressed_bytes: int, max_ratio: float):
        self.decompressed_bytes = decompressed_bytes
        self.compressed_bytes = compressed_bytes
        self.max_ratio = max_ratio
        ratio = decompressed_bytes / max(compressed_bytes, 1)
        super().__init__(
            f"Suspected decompression bomb: {decompressed_bytes} bytes from {compressed_bytes} compressed "
            f"(ratio {ratio:.1f} > {max_ratio:.1f})"
        )


class LimitExceededError(UnityPackageError):
    """Raised when a configured extraction quota is breached."""

    def __init__(self, kind: LimitKind, limit: int, actual: int, asset_path: str | None = None):
        self.kind = kind
        self.limit = limit
        self.actual = actual
        self.asset_path = asset_path
        where = f" ({asset_path})" if asset_path else ""
        super().__init__(f"Extraction limit exceeded: {kind.value} {actual} > {limit}{where}")


class UnsafeAssetPathError(UnityPackageError):
    """Raised when an asset path would resolve outside the output directory."""

    def __init__(self, relative_path: str, message: str | None = None):
        self.relative_path = relative_path
        super().__init__(message or f"Asset path escapes the output directory: {relative_path}")


class ExtractionIOError(UnityPackageError):
    """Raised when writing extracted content fails.

    ``kind`` separates disk-full conditions from other filesystem failures;
    ``user_message`` carries text suitable for display.
    """

    def __init__(self, kind: IOFailureKind, path: str, user_message: str):
        self.kind = kind
        self.path = path
        self.user_message = user_message
        super().__init__(user_message)


class ExtractionCancelledError(UnityPackageError):
    """Raised when the caller cancels an extraction or preview job."""

    pass
