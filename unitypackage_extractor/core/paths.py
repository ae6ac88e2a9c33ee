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
Path handling for asset ``pathname`` entries.

Unity stores each asset's project path as free text inside the archive, so it
has to be treated as untrusted input: separators are unified, ``.`` and ``..``
segments are dropped, characters that are invalid in file names are removed,
and every final destination is checked to stay under the output root.

Some exporters also emit file names whose extension has been padded with
garbage (``Foo.prefab`` becoming ``Foo.prefabXXXXXXXXXXXXXXXXXXXXXXXX``) or
with trailing zeros. ``normalize_file_extension`` repairs those names.
"""

import logging
import os
import posixpath
from dataclasses import dataclass, field
from pathlib import Path

from .exceptions import UnsafeAssetPathError

logger = logging.getLogger(__name__)

# Extensions inflated past this length are treated as corrupted.
MIN_CORRUPTED_EXTENSION_LENGTH = 30

# Characters rejected in file names on at least one supported platform.
INVALID_FILE_NAME_CHARS = frozenset('<>:"/\\|?*') | frozenset(chr(c) for c in range(32))

# fmt: off
_KNOWN_EXTENSIONS = (
    ".scenewithbuildsettings", ".fusionweavertrigger", ".overridecontroller", ".physicsmaterial2d",
    ".noisehlsltemplate", ".physicmaterial", ".spriteatlasv2", ".rendertexture", ".inputactions",
    ".terrainlayer", ".fontsettings", ".shadergraph", ".spriteatlas", ".controller", ".cfxrshader",
    ".spritelib", ".xcprivacy", ".gradients", ".modulemap", ".lighting", ".giparams", ".playable",
    ".raytrace", ".afdesign", ".cubemap", ".compute", ".guiskin", ".defines", ".tpsheet", ".release",
    ".strings", ".prefab", ".colors", ".preset", ".asmdef", ".shader", ".pcache", ".signal", ".nuspec",
    ".ignore", ".readme", ".bundle", ".stgmat", ".tbpost", ".curves", ".srcaar", ".asmref", ".asset",
    ".unity", ".sbsar", ".mixer", ".cginc", ".bytes", ".solid", ".flare", ".jslib", ".props", ".nunit",
    ".dylib", ".fspro", ".plist", ".blend", ".debug", ".brush", ".anim", ".tiff", ".meta", ".json",
    ".html", ".xlsx", ".docx", ".mask", ".uxml", ".hlsl", ".mesh", ".thmx", ".root", ".orig", ".text",
    ".jpeg", ".bank", ".cube", ".pdf", ".png", ".txt", ".psd", ".ini", ".wav", ".rtf", ".fbx", ".zip",
    ".mat", ".url", ".jpg", ".ttf", ".mp3", ".eps", ".mtl", ".obj", ".odt", ".tga", ".dll", ".exr",
    ".xml", ".htm", ".tif", ".psb", ".mp4", ".ogg", ".bmp", ".dae", ".hdr", ".uss", ".svg", ".tss",
    ".otf", ".aar", ".log", ".pdb", ".doc", ".exe", ".bin", ".gif", ".vfx", ".wmv", ".cpp", ".jar",
    ".dat", ".pak", ".lib", ".raw", ".ico", ".mov", ".cs", ".md", ".ai", ".7z", ".db", ".mm", ".py",
    ".so", ".cg", ".sh", ".js", ".a", ".h", ".m",
)
# fmt: on

# Longest first so ".prefab" wins over ".p..." style prefixes.
KNOWN_EXTENSIONS = tuple(sorted(_KNOWN_EXTENSIONS, key=len, reverse=True))


@dataclass(frozen=True)
class SegmentNormalization:
    """One path segment before and after extension repair."""

    original: str
    normalized: str

    @property
    def changed(self) -> bool:
        return self.original != self.normalized


@dataclass(frozen=True)
class PathNormalization:
    """Result of normalizing a ``pathname`` entry."""

    normalized_path: str
    original_path: str
    segments: tuple[SegmentNormalization, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.normalized_path

    @property
    def file_name(self) -> str:
        return self.segments[-1].normalized if self.segments else ""

    def repaired_directories(self) -> set[str]:
        """Normalized directory prefixes whose own segment was repaired."""
        repaired: set[str] = set()
        parts: list[str] = []
        for segment in self.segments[:-1]:
            parts.append(segment.normalized)
            if segment.changed:
                repaired.add("/".join(parts))
        return repaired


EMPTY_NORMALIZATION = PathNormalization("", "", ())


def _trim_trailing_zeros(suffix: str) -> str:
    if not suffix.endswith("0"):
        return suffix
    trimmed = suffix.rstrip("0")
    # Only the dot is left
    if len(trimmed) <= 1:
        return ""
    return trimmed


def normalize_file_extension(file_name: str) -> str:
    """Repair a file name whose extension was padded by a faulty exporter."""
    if not file_name or not file_name.strip():
        return file_name

    dot = file_name.rfind(".")
    if dot <= 0 or dot == len(file_name) - 1:
        return file_name

    prefix, suffix = file_name[:dot], file_name[dot:]

    trimmed = _trim_trailing_zeros(suffix)
    if trimmed != suffix:
        return prefix + trimmed

    if len(suffix) < MIN_CORRUPTED_EXTENSION_LENGTH:
        return file_name

    lowered = suffix.lower()
    for extension in KNOWN_EXTENSIONS:
        if lowered.startswith(extension):
            return file_name[: dot + len(extension)]

    return file_name


def sanitize_segment(segment: str | None, fallback: str = "Other") -> str:
    """Strip separators and invalid characters from a single path segment."""
    if not segment or not segment.strip():
        return fallback
    cleaned = "".join(c for c in segment if c not in INVALID_FILE_NAME_CHARS).strip()
    return cleaned or fallback


def normalize_relative_path(raw: str | None) -> PathNormalization:
    """Normalize an untrusted archive ``pathname`` into a safe relative path.

    Returns ``EMPTY_NORMALIZATION`` when nothing usable is left.
    """
    if raw is None:
        return EMPTY_NORMALIZATION

    text = raw.replace("\\", "/").replace("\r", "").replace("\n", "").strip()
    if not text:
        return EMPTY_NORMALIZATION

    had_dot_segments = False
    filtered_count = 0
    segments: list[SegmentNormalization] = []

    for part in text.split("/"):
        if part in (".", ".."):
            had_dot_segments = True
            continue
        part = part.strip()
        if not part:
            continue
        cleaned = "".join(c for c in part if c not in INVALID_FILE_NAME_CHARS).strip()
        # ". ." style segments collapse to dots after filtering
        if not cleaned or cleaned in (".", ".."):
            filtered_count += 1
            continue
        segments.append(SegmentNormalization(cleaned, normalize_file_extension(cleaned)))

    if not segments:
        logger.warning(
            "Path normalization resulted in empty path | original=%r | had_dot_dot=%s | filtered=%d",
            raw,
            had_dot_segments,
            filtered_count,
        )
        return EMPTY_NORMALIZATION

    original_path = "/".join(s.original for s in segments)
    normalized_path = "/".join(s.normalized for s in segments)
    if original_path != normalized_path:
        logger.info("Path normalized | original='%s' | normalized='%s'", original_path, normalized_path)

    return PathNormalization(normalized_path, original_path, tuple(segments))


def ensure_under_root(root: str | Path, relative_path: str) -> Path:
    """Join *relative_path* onto *root* and verify the result stays inside it.

    Raises:
        UnsafeAssetPathError: if the resolved candidate escapes the root
    """
    root_resolved = Path(root).resolve()
    candidate = (root_resolved / relative_path).resolve()
    if candidate == root_resolved or not candidate.is_relative_to(root_resolved):
        logger.error("Path traversal detected | candidate='%s' | root='%s'", candidate, root_resolved)
        raise UnsafeAssetPathError(relative_path)
    return candidate


class UniquePathAllocator:
    """Hands out relative output paths, adding `` (n)`` suffixes on collision.

    Comparison is case-insensitive so the layout stays valid on case-folding
    filesystems. Suffixes are only applied when ``allow_suffixes`` is set;
    otherwise a repeated path is returned unchanged and the later asset
    overwrites the earlier one, matching a plain Unity import.
    """

    def __init__(self, allow_suffixes: bool = True):
        self.allow_suffixes = allow_suffixes
        self._used: set[str] = set()
        self._counters: dict[str, int] = {}

    def allocate(self, relative_path: str) -> str:
        key = relative_path.lower()
        if key not in self._used:
            self._used.add(key)
            return relative_path
        if not self.allow_suffixes:
            return relative_path

        directory, file_name = posixpath.split(relative_path)
        stem, extension = os.path.splitext(file_name or "Asset")
        if not stem:
            stem, extension = file_name, ""

        counter = self._counters.get(key, 1)
        while True:
            candidate_name = f"{stem} ({counter}){extension}"
            candidate = posixpath.join(directory, candidate_name) if directory else candidate_name
            if candidate.lower() not in self._used:
                self._used.add(candidate.lower())
                self._counters[key] = counter + 1
                logger.info("Duplicate path resolved | original='%s' | unique='%s'", relative_path, candidate)
                return candidate
            counter += 1
