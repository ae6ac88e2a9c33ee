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
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest before running tests.
All fixtures defined here are available to every test module without
explicit imports.
"""

from __future__ import annotations

import gzip
import io
import tarfile
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

project_root = Path(__file__).parent.parent
env_file = project_root / ".env"

if env_file.exists():
    load_dotenv(env_file)


# ---------------------------------------------------------------------------
# Package builders
# ---------------------------------------------------------------------------


def make_guid(n: int) -> str:
    """Deterministic 32-hex-character GUID."""
    return f"{n:032x}"


def asset_members(
    guid: str,
    pathname: str | None,
    content: bytes | None = b"",
    meta: bytes | None = None,
    preview: bytes | None = None,
) -> list[tuple[str, bytes]]:
    """Archive members for one asset in the order Unity writes them.

    Pass ``None`` for ``pathname`` or ``content`` to leave that member out.
    """
    members: list[tuple[str, bytes]] = []
    if content is not None:
        members.append((f"{guid}/asset", content))
    if meta is not None:
        members.append((f"{guid}/asset.meta", meta))
    if pathname is not None:
        members.append((f"{guid}/pathname", pathname.encode("utf-8")))
    if preview is not None:
        members.append((f"{guid}/preview.png", preview))
    return members


def build_tar_bytes(members: list[tuple[str, bytes]], directories: list[str] | None = None) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as tar:
        for name in directories or []:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, data in members:
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def build_unitypackage(
    path: Path,
    members: list[tuple[str, bytes]],
    compress: bool = True,
    directories: list[str] | None = None,
) -> Path:
    """Write a ``.unitypackage`` made of *members* (``(name, data)`` pairs) to *path*."""
    data = build_tar_bytes(members, directories)
    if compress:
        data = gzip.compress(data)
    path.write_bytes(data)
    return path


@pytest.fixture
def make_package(tmp_path: Path):
    """Factory fixture for synthetic Unity packages.

    Usage::

        package = make_package({
            "Assets/Scripts/Player.cs": b"class Player {}",
            "Assets/Textures/Hero.png": (b"\\x89PNG...", b"meta"),
        })

    Values are either the asset bytes or an ``(asset, meta)`` tuple. Every
    asset gets a fresh GUID; assets are written in dictionary order.
    """
    _counter = [0]

    def _make(assets: dict[str, bytes | tuple[bytes, bytes]], name: str = "Test.unitypackage") -> Path:
        members: list[tuple[str, bytes]] = []
        for pathname, value in assets.items():
            _counter[0] += 1
            content, meta = value if isinstance(value, tuple) else (value, None)
            members.extend(asset_members(make_guid(_counter[0]), pathname, content, meta))
        package_dir = tmp_path / "packages"
        package_dir.mkdir(exist_ok=True)
        return build_unitypackage(package_dir / name, members)

    return _make


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """A not-yet-existing output directory."""
    return tmp_path / "out"


def files_under(root: Path) -> list[Path]:
    """Every regular file below *root* (empty when it does not exist)."""
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file())
