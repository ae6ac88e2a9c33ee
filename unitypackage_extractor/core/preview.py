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
Read-only inspection of Unity packages.

Previewing runs the same reader and assembler as extraction but never touches
an output directory. Extraction limits do not apply: each asset is cut to the
preview threshold instead, and the cut is reported through
``is_asset_data_truncated``.
"""

import logging
import shutil
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from .archive_reader import DEFAULT_MAX_COMPRESSION_RATIO, ArchiveReader
from .assembler import AssetAssembler, LogicalAsset, OversizePolicy
from .models import MIB, PreviewAsset, PreviewResult
from .paths import sanitize_segment

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_MAX_BYTES = 8 * MIB
PREVIEW_MAX_BYTES_CAP = 64 * MIB
PREVIEW_ROOT_PREFIX = "unitypackage_preview_"


class UnityPackagePreviewBuilder:
    """Builds ``PreviewResult`` listings.

    Example:
        >>> builder = UnityPackagePreviewBuilder()
        >>> preview = builder.build_preview("Pack.unitypackage")
        >>> for asset in preview.assets:
        ...     print(asset.relative_path, asset.asset_size_bytes)
    """

    def __init__(
        self,
        preview_max_bytes: int = DEFAULT_PREVIEW_MAX_BYTES,
        max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
    ):
        if preview_max_bytes <= 0:
            preview_max_bytes = DEFAULT_PREVIEW_MAX_BYTES
        self.preview_max_bytes = min(preview_max_bytes, PREVIEW_MAX_BYTES_CAP)
        self.max_compression_ratio = max_compression_ratio

    def build_preview(
        self,
        package_path: str | Path,
        materialize_preview_images: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> PreviewResult:
        """
        List the assets of a package.

        Args:
            package_path: Path to the ``.unitypackage``
            materialize_preview_images: Also write ``preview.png`` payloads to a
                fresh temporary root exposed as ``temporary_extraction_root``
            cancel_event: Checked between archive entries

        Returns:
            PreviewResult sorted by relative path, case-insensitively

        Raises:
            FileNotFoundError: the package does not exist
            ArchiveCorruptError: the archive cannot be decoded
            DecompressionBombSuspectedError: the inflation ratio was exceeded
            ExtractionCancelledError: ``cancel_event`` was set
        """
        path = Path(package_path)
        if not path.is_file():
            raise FileNotFoundError(f"Unity package not found: {path}")

        started = time.monotonic()
        stat = path.stat()
        result = PreviewResult(
            package_path=str(path),
            package_name=path.name,
            package_size_bytes=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

        try:
            with tempfile.TemporaryDirectory(prefix="unitypackage_spool_") as spool:
                reader = ArchiveReader(path, max_compression_ratio=self.max_compression_ratio)
                assembler = AssetAssembler(
                    self.preview_max_bytes,
                    oversize_policy=OversizePolicy.TRUNCATE,
                    spool_directory=spool,
                )
                cancel_check = cancel_event.is_set if cancel_event is not None else None
                assets = assembler.assemble(reader.entries(), cancel_check=cancel_check)
                try:
                    for asset in assets:
                        try:
                            result.assets.append(self._preview_asset(asset, result, materialize_preview_images))
                            result.directories_to_prune.update(asset.normalization.repaired_directories())
                        finally:
                            asset.close()
                finally:
                    assets.close()
        except BaseException:
            dispose_preview(result)
            raise

        result.assets.sort(key=lambda a: a.relative_path.lower())
        result.total_asset_size_bytes = sum(a.asset_size_bytes for a in result.assets)
        result.directories_to_prune.update(_empty_folders(assembler.folder_paths, result.assets))

        logger.info(
            "Preview built | package='%s' | assets=%d | total_asset_bytes=%d | directories_to_prune=%d | "
            "duration=%.2fs",
            path,
            len(result.assets),
            result.total_asset_size_bytes,
            len(result.directories_to_prune),
            time.monotonic() - started,
        )
        return result

    def _preview_asset(self, asset: LogicalAsset, result: PreviewResult, materialize: bool) -> PreviewAsset:
        preview = PreviewAsset(
            relative_path=asset.relative_path,
            asset_size_bytes=asset.size,
            has_meta_file=asset.has_meta,
            asset_data=asset.asset.read_bytes(self.preview_max_bytes),
            is_asset_data_truncated=asset.is_truncated,
            guid=asset.guid,
        )
        if asset.is_truncated:
            logger.debug(
                "Preview data truncated | asset='%s' | size=%d | kept=%d",
                asset.relative_path,
                asset.size,
                len(preview.asset_data or b""),
            )

        if asset.preview is not None:
            preview.preview_image_data = asset.preview.read_bytes(self.preview_max_bytes)
            if materialize:
                if result.temporary_extraction_root is None:
                    result.temporary_extraction_root = tempfile.mkdtemp(prefix=PREVIEW_ROOT_PREFIX)
                    logger.debug("Created preview root: %s", result.temporary_extraction_root)
                image_path = Path(result.temporary_extraction_root) / f"{sanitize_segment(asset.guid, 'asset')}.png"
                with open(image_path, "wb") as fh:
                    asset.preview.copy_to(fh)
                preview.preview_image_path = str(image_path)
        return preview


def _empty_folders(folder_paths, assets: list[PreviewAsset]) -> set[str]:
    """Folder entries under which no asset lives."""
    asset_paths = [a.relative_path.lower() for a in assets]
    empty: set[str] = set()
    for folder in folder_paths:
        prefix = folder.normalized_path.lower() + "/"
        if not any(p.startswith(prefix) for p in asset_paths):
            empty.add(folder.normalized_path)
    return empty


def dispose_preview(result: PreviewResult) -> None:
    """Remove the temporary root created for materialized preview images."""
    root = result.temporary_extraction_root
    if not root:
        return
    shutil.rmtree(root, ignore_errors=True)
    result.temporary_extraction_root = None
    for asset in result.assets:
        asset.preview_image_path = None
    logger.debug("Disposed preview root: %s", root)


def build_preview(
    package_path: str | Path,
    materialize_preview_images: bool = False,
    preview_max_bytes: int = DEFAULT_PREVIEW_MAX_BYTES,
) -> PreviewResult:
    """Convenience function to preview a package with default settings."""
    return UnityPackagePreviewBuilder(preview_max_bytes).build_preview(package_path, materialize_preview_images)
