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
Groups raw archive entries into logical assets.

Members of one GUID are not guaranteed to be contiguous and the destination
path (the ``pathname`` member) may arrive after the content, so every GUID
gets its own bucket that buffers components until the bucket is complete.
Buffers spill to disk past ``SPOOL_THRESHOLD`` and each component is bounded
by the per-asset byte budget, which caps memory at roughly
``open buckets x max_asset_bytes`` even for adversarial orderings.
"""

import logging
import shutil
import tempfile
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO

from .archive_reader import RawArchiveEntry
from .exceptions import ExtractionCancelledError
from .limits import check_asset_bytes, enforce
from .models import KIB, MIB, AssetDiagnostic, DiagnosticKind, ExtractionLimits
from .paths import EMPTY_NORMALIZATION, PathNormalization, normalize_relative_path

logger = logging.getLogger(__name__)

SPOOL_THRESHOLD = 8 * MIB
MAX_PATHNAME_BYTES = 16 * KIB
COPY_CHUNK_SIZE = 64 * KIB

COMPONENT_PATHNAME = "pathname"
COMPONENT_ASSET = "asset"
COMPONENT_META = "asset.meta"
COMPONENT_PREVIEW = "preview.png"
KNOWN_COMPONENTS = frozenset({COMPONENT_PATHNAME, COMPONENT_ASSET, COMPONENT_META, COMPONENT_PREVIEW})


class OversizePolicy(str, Enum):
    """What to do when a component exceeds the per-asset budget."""

    FAIL = "fail"
    TRUNCATE = "truncate"


class AssetComponent:
    """Buffered content of one archive member.

    ``size`` is the member's real size; ``stored_size`` is what was kept,
    which is smaller only when the component was truncated.
    """

    def __init__(self, spool_directory: str | Path | None = None):
        self._buffer: IO[bytes] = tempfile.SpooledTemporaryFile(  # type: ignore[assignment]
            max_size=SPOOL_THRESHOLD,
            mode="w+b",
            dir=str(spool_directory) if spool_directory else None,
        )
        self.size = 0
        self.stored_size = 0
        self.is_truncated = False
        self._closed = False

    def append(self, data: bytes, keep_limit: int | None = None) -> None:
        self.size += len(data)
        if keep_limit is not None:
            room = keep_limit - self.stored_size
            if room < len(data):
                self.is_truncated = True
                data = data[: max(room, 0)]
        if data:
            self._buffer.write(data)
            self.stored_size += len(data)

    def read_bytes(self, limit: int | None = None) -> bytes:
        self._buffer.seek(0)
        return self._buffer.read() if limit is None else self._buffer.read(limit)

    def copy_to(self, destination: IO[bytes]) -> int:
        self._buffer.seek(0)
        shutil.copyfileobj(self._buffer, destination, COPY_CHUNK_SIZE)
        return self.stored_size

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._buffer.close()


@dataclass
class LogicalAsset:
    """All components of one GUID, ready to be written or inspected."""

    guid: str
    sequence: int
    normalization: PathNormalization
    asset: AssetComponent
    meta: AssetComponent | None = None
    preview: AssetComponent | None = None

    @property
    def relative_path(self) -> str:
        return self.normalization.normalized_path

    @property
    def original_relative_path(self) -> str:
        return self.normalization.original_path

    @property
    def size(self) -> int:
        return self.asset.size

    @property
    def has_meta(self) -> bool:
        return self.meta is not None

    @property
    def is_truncated(self) -> bool:
        return self.asset.is_truncated

    def close(self) -> None:
        for component in (self.asset, self.meta, self.preview):
            if component is not None:
                component.close()


@dataclass
class _Bucket:
    guid: str
    sequence: int
    normalization: PathNormalization | None = None
    invalid_pathname: bool = False
    components: dict[str, AssetComponent] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.normalization is not None and COMPONENT_ASSET in self.components

    def close(self) -> None:
        for component in self.components.values():
            component.close()
        self.components.clear()


@dataclass
class AssemblyStats:
    entries_seen: int = 0
    entries_ignored: int = 0
    assets_emitted: int = 0
    folders: int = 0
    orphaned: int = 0
    late_components: int = 0
    truncated_components: int = 0


class AssetAssembler:
    """Turns a stream of ``RawArchiveEntry`` into ``LogicalAsset`` objects.

    Emitted assets are owned by the caller, who must ``close()`` them.
    """

    def __init__(
        self,
        max_asset_bytes: int,
        oversize_policy: OversizePolicy = OversizePolicy.FAIL,
        spool_directory: str | Path | None = None,
    ):
        self.max_asset_bytes = max_asset_bytes
        self._limits = ExtractionLimits(max_asset_bytes=max_asset_bytes)
        self.oversize_policy = oversize_policy
        self.spool_directory = spool_directory
        self.diagnostics: list[AssetDiagnostic] = []
        self.folder_paths: list[PathNormalization] = []
        self.stats = AssemblyStats()
        self._buckets: dict[str, _Bucket] = {}
        self._emitted: set[str] = set()
        self._next_sequence = 0

    def assemble(
        self,
        entries: Iterable[RawArchiveEntry],
        cancel_check: Callable[[], bool] | None = None,
    ) -> Iterator[LogicalAsset]:
        """Yield complete assets as soon as the stream moves past their GUID.

        Raises:
            LimitExceededError: a component breaches the budget under ``OversizePolicy.FAIL``
            ExtractionCancelledError: ``cancel_check`` returned True between entries
        """
        current_guid: str | None = None
        try:
            for entry in entries:
                if cancel_check is not None and cancel_check():
                    raise ExtractionCancelledError("Cancelled while reading archive entries")

                self.stats.entries_seen += 1
                if not entry.guid or entry.component not in KNOWN_COMPONENTS:
                    self.stats.entries_ignored += 1
                    logger.debug("Ignoring archive member: %s", entry.path)
                    continue

                if entry.guid in self._emitted:
                    self.stats.late_components += 1
                    self.diagnostics.append(
                        AssetDiagnostic(DiagnosticKind.LATE_COMPONENT, entry.guid, f"{entry.component} after emit")
                    )
                    logger.warning("Late component ignored | guid=%s | component=%s", entry.guid, entry.component)
                    continue

                if current_guid is not None and entry.guid != current_guid:
                    yield from self._emit_complete(exclude=entry.guid)
                current_guid = entry.guid

                bucket = self._buckets.get(entry.guid)
                if bucket is None:
                    bucket = _Bucket(entry.guid, self._next_sequence)
                    self._next_sequence += 1
                    self._buckets[entry.guid] = bucket

                self._consume(bucket, entry)

            yield from self._emit_complete(exclude=None)
            self._finalize_incomplete()
        finally:
            for bucket in self._buckets.values():
                bucket.close()
            self._buckets.clear()

    def _consume(self, bucket: _Bucket, entry: RawArchiveEntry) -> None:
        if entry.component == COMPONENT_PATHNAME:
            raw = entry.read(MAX_PATHNAME_BYTES)
            while entry.read(COPY_CHUNK_SIZE):
                pass
            text = raw.decode("utf-8", errors="replace").lstrip("\ufeff")
            first_line = text.splitlines()[0] if text.strip() else ""
            normalization = normalize_relative_path(first_line)
            if normalization.is_empty:
                bucket.invalid_pathname = True
                bucket.normalization = None
                self.diagnostics.append(
                    AssetDiagnostic(DiagnosticKind.INVALID_PATHNAME, bucket.guid, repr(first_line[:200]))
                )
                logger.warning("Invalid pathname entry | guid=%s | pathname=%r", bucket.guid, first_line[:200])
                return
            bucket.normalization = normalization
            bucket.invalid_pathname = False
            return

        component = self._read_component(entry)
        previous = bucket.components.get(entry.component)
        if previous is not None:
            logger.warning("Duplicate component replaced | guid=%s | component=%s", bucket.guid, entry.component)
            previous.close()
        bucket.components[entry.component] = component

    def _read_component(self, entry: RawArchiveEntry) -> AssetComponent:
        limit = self.max_asset_bytes
        fail = self.oversize_policy == OversizePolicy.FAIL

        if fail:
            # declared size first, so oversized members are rejected before buffering
            enforce(check_asset_bytes(self._limits, entry.size), entry.path)

        component = AssetComponent(self.spool_directory)
        try:
            while True:
                chunk = entry.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                if fail:
                    enforce(check_asset_bytes(self._limits, component.size + len(chunk)), entry.path)
                component.append(chunk, keep_limit=None if fail else limit)
        except BaseException:
            component.close()
            raise

        if component.is_truncated:
            self.stats.truncated_components += 1
            logger.debug("Component truncated | entry=%s | size=%d | kept=%d", entry.path, component.size, limit)
        return component

    def _emit_complete(self, exclude: str | None) -> Iterator[LogicalAsset]:
        ready = sorted(
            (b for guid, b in self._buckets.items() if guid != exclude and b.is_complete),
            key=lambda b: b.sequence,
        )
        for bucket in ready:
            del self._buckets[bucket.guid]
            self._emitted.add(bucket.guid)
            components = bucket.components
            asset = LogicalAsset(
                guid=bucket.guid,
                sequence=bucket.sequence,
                normalization=bucket.normalization or EMPTY_NORMALIZATION,
                asset=components.pop(COMPONENT_ASSET),
                meta=components.pop(COMPONENT_META, None),
                preview=components.pop(COMPONENT_PREVIEW, None),
            )
            self.stats.assets_emitted += 1
            yield asset

    def _finalize_incomplete(self) -> None:
        for bucket in sorted(self._buckets.values(), key=lambda b: b.sequence):
            if bucket.normalization is not None:
                # pathname without content marks a folder in the Unity project
                self.folder_paths.append(bucket.normalization)
                self.stats.folders += 1
                continue
            if bucket.invalid_pathname:
                continue
            self.stats.orphaned += 1
            self.diagnostics.append(
                AssetDiagnostic(
                    DiagnosticKind.MISSING_PATHNAME,
                    bucket.guid,
                    "components without pathname: " + ", ".join(sorted(bucket.components)),
                )
            )
            logger.warning("Asset without pathname dropped | guid=%s", bucket.guid)
