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
Tests for the read-only preview builder.
"""

from pathlib import Path

import pytest
from conftest import asset_members, build_unitypackage, make_guid

from unitypackage_extractor.core.exceptions import ArchiveCorruptError
from unitypackage_extractor.core.preview import (
    DEFAULT_PREVIEW_MAX_BYTES,
    PREVIEW_MAX_BYTES_CAP,
    PREVIEW_ROOT_PREFIX,
    UnityPackagePreviewBuilder,
    build_preview,
    dispose_preview,
)


class TestPreviewListing:
    """Test the asset listing."""

    def test_assets_sorted_case_insensitively(self, make_package):
        package = make_package({"Assets/zeta.txt": b"z", "Assets/Alpha.txt": b"a", "Assets/beta.txt": b"b"})
        preview = build_preview(package)

        assert [a.relative_path for a in preview.assets] == ["Assets/Alpha.txt", "Assets/beta.txt", "Assets/zeta.txt"]

    def test_package_metadata(self, make_package):
        package = make_package({"Assets/a.txt": b"abc", "Assets/b.txt": b"de"}, name="Demo.unitypackage")
        preview = build_preview(package)

        assert preview.package_name == "Demo.unitypackage"
        assert preview.package_size_bytes == package.stat().st_size
        assert preview.last_modified is not None
        assert preview.total_asset_size_bytes == 5
        assert preview.temporary_extraction_root is None

    def test_meta_and_guid(self, make_package):
        package = make_package({"Assets/a.txt": (b"a", b"guid: x"), "Assets/b.txt": b"b"})
        preview = build_preview(package)

        by_path = {a.relative_path: a for a in preview.assets}
        assert by_path["Assets/a.txt"].has_meta_file
        assert not by_path["Assets/b.txt"].has_meta_file
        assert by_path["Assets/a.txt"].guid == make_guid(1)
        assert by_path["Assets/a.txt"].asset_data == b"a"

    def test_preview_writes_nothing(self, make_package, tmp_path):
        package = make_package({"Assets/a.txt": b"a"})
        before = sorted(tmp_path.rglob("*"))
        build_preview(package)
        assert sorted(tmp_path.rglob("*")) == before

    def test_to_dict(self, make_package):
        preview = build_preview(make_package({"Assets/a.txt": b"a"}))
        data = preview.to_dict()

        assert data["assets_count"] == 1
        assert data["assets"][0]["relative_path"] == "Assets/a.txt"
        assert data["directories_to_prune"] == []


class TestTruncation:
    """Test the per-asset preview threshold."""

    def test_large_asset_is_truncated(self, make_package):
        package = make_package({"Assets/big.bin": b"x" * 1000, "Assets/small.bin": b"y" * 10})
        preview = UnityPackagePreviewBuilder(preview_max_bytes=64).build_preview(package)

        by_path = {a.relative_path: a for a in preview.assets}
        big = by_path["Assets/big.bin"]
        assert big.is_asset_data_truncated
        assert big.asset_data == b"x" * 64
        assert big.asset_size_bytes == 1000
        assert not by_path["Assets/small.bin"].is_asset_data_truncated
        assert preview.total_asset_size_bytes == 1010

    def test_threshold_is_clamped(self):
        assert UnityPackagePreviewBuilder(preview_max_bytes=0).preview_max_bytes == DEFAULT_PREVIEW_MAX_BYTES
        assert UnityPackagePreviewBuilder(preview_max_bytes=-1).preview_max_bytes == DEFAULT_PREVIEW_MAX_BYTES
        assert UnityPackagePreviewBuilder(preview_max_bytes=10**12).preview_max_bytes == PREVIEW_MAX_BYTES_CAP


class TestDirectoriesToPrune:
    """Test the set of directories a host should remove after import."""

    def test_repaired_directory_is_listed(self, make_package):
        preview = build_preview(make_package({"Assets/Pack.fbx000/Model.fbx": b"m"}))

        assert preview.assets[0].relative_path == "Assets/Pack.fbx/Model.fbx"
        assert preview.directories_to_prune == {"Assets/Pack.fbx"}

    def test_empty_folder_entry_is_listed(self, tmp_path):
        members = (
            asset_members(make_guid(1), "Assets/Used", content=None)
            + asset_members(make_guid(2), "Assets/Empty", content=None)
            + asset_members(make_guid(3), "Assets/Used/a.txt", b"a")
        )
        preview = build_preview(build_unitypackage(tmp_path / "p.unitypackage", members))

        assert [a.relative_path for a in preview.assets] == ["Assets/Used/a.txt"]
        assert preview.directories_to_prune == {"Assets/Empty"}


class TestPreviewImages:
    """Test preview image handling."""

    def test_image_bytes_in_memory(self, tmp_path):
        members = asset_members(make_guid(1), "Assets/Hero.png", b"asset", preview=b"thumb")
        preview = build_preview(build_unitypackage(tmp_path / "p.unitypackage", members))

        assert preview.assets[0].preview_image_data == b"thumb"
        assert preview.assets[0].preview_image_path is None
        assert preview.temporary_extraction_root is None

    def test_materialized_images_and_dispose(self, tmp_path):
        members = asset_members(make_guid(1), "Assets/Hero.png", b"asset", preview=b"thumb") + asset_members(
            make_guid(2), "Assets/Other.txt", b"other"
        )
        package = build_unitypackage(tmp_path / "p.unitypackage", members)
        preview = build_preview(package, materialize_preview_images=True)

        root = Path(preview.temporary_extraction_root)
        assert root.name.startswith(PREVIEW_ROOT_PREFIX)
        image = Path(preview.assets[0].preview_image_path)
        assert image == root / f"{make_guid(1)}.png"
        assert image.read_bytes() == b"thumb"
        assert preview.assets[1].preview_image_path is None

        dispose_preview(preview)
        assert not root.exists()
        assert preview.temporary_extraction_root is None
        assert preview.assets[0].preview_image_path is None

    def test_no_root_without_images(self, make_package):
        preview = build_preview(make_package({"Assets/a.txt": b"a"}), materialize_preview_images=True)
        assert preview.temporary_extraction_root is None
        dispose_preview(preview)


class TestPreviewFailures:
    """Test error reporting."""

    def test_missing_package(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            build_preview(tmp_path / "nope.unitypackage")

    def test_corrupt_package(self, tmp_path):
        package = tmp_path / "bad.unitypackage"
        package.write_bytes(b"\x1f\x8b\x07\x00" + b"\x00" * 1024)
        with pytest.raises(ArchiveCorruptError):
            build_preview(package)
