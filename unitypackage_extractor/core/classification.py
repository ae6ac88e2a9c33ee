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
Extension-based classification of Unity assets into category folders.
"""

import posixpath
from enum import Enum

from .paths import sanitize_segment


class AssetCategory(str, Enum):
    """Category folders used when organizing output by asset type."""

    SCRIPTS = "Scripts"
    TEXTURES = "Textures"
    MODELS = "Models"
    AUDIO = "Audio"
    SHADERS = "Shaders"
    PLUGINS = "Plugins"
    ANIMATIONS = "Animations"
    MATERIALS = "Materials"
    PREFABS = "Prefabs"
    SCENES = "Scenes"
    FONTS = "Fonts"
    DOCUMENTS = "Documents"
    VIDEOS = "Videos"
    ASSETS = "Assets"
    OTHER = "Other"


_EXTENSION_GROUPS: dict[AssetCategory, tuple[str, ...]] = {
    AssetCategory.TEXTURES: (
        ".png", ".jpg", ".jpeg", ".tga", ".tif", ".tiff", ".psd", ".bmp", ".dds", ".gif", ".hdr", ".exr",
    ),
    AssetCategory.MODELS: (".fbx", ".obj", ".dae", ".blend", ".3ds", ".dxf", ".stl"),
    AssetCategory.AUDIO: (
        ".wav", ".wave", ".mp3", ".ogg", ".oga", ".aiff", ".aif", ".flac", ".m4a", ".aac", ".wma", ".opus",
        ".caf", ".au",
    ),
    AssetCategory.SCRIPTS: (".cs", ".js", ".boo", ".asmdef"),
    AssetCategory.SHADERS: (
        ".shader", ".cg", ".cginc", ".compute", ".shadergraph", ".shadersubgraph", ".hlsl", ".glsl",
    ),
    AssetCategory.PLUGINS: (".dll",),
    AssetCategory.ANIMATIONS: (".anim", ".controller", ".overridecontroller", ".mask"),
    AssetCategory.MATERIALS: (".mat", ".physicmaterial"),
    AssetCategory.PREFABS: (".prefab",),
    AssetCategory.SCENES: (".unity",),
    AssetCategory.FONTS: (".ttf", ".otf"),
    AssetCategory.DOCUMENTS: (
        ".pdf", ".txt", ".md", ".rtf", ".json", ".xml", ".yml", ".yaml", ".uss", ".uxml",
    ),
    AssetCategory.VIDEOS: (".mp4", ".mov", ".webm"),
    AssetCategory.ASSETS: (".asset",),
}  # fmt: skip

EXTENSION_TO_CATEGORY: dict[str, AssetCategory] = {
    ext: category for category, extensions in _EXTENSION_GROUPS.items() for ext in extensions
}


def classify(relative_path: str) -> AssetCategory:
    """Map a relative path to its category using the (case-insensitive) extension."""
    _, extension = posixpath.splitext(posixpath.basename(relative_path.replace("\\", "/")))
    return EXTENSION_TO_CATEGORY.get(extension.lower(), AssetCategory.OTHER)


def resolve_output_relative_path(relative_path: str, organize_by_categories: bool) -> str:
    """Return where an asset lands relative to the output root.

    Flat layout keeps the asset's own relative path. Organized layout places
    the file name under its category folder: ``<Category>/<file name>``.
    """
    if not organize_by_categories:
        return relative_path

    file_name = posixpath.basename(relative_path.replace("\\", "/")) or "Asset"
    category = classify(relative_path)
    return f"{sanitize_segment(category.value)}/{file_name}"
