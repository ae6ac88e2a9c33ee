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
Constants for the Unity package extractor.
"""

from ..core.models import DEFAULT_MAX_ASSET_BYTES, DEFAULT_MAX_ASSETS, DEFAULT_MAX_PACKAGE_BYTES, MIB

try:
    from .._version import __version__ as PACKAGE_VERSION
except Exception:  # pragma: no cover
    PACKAGE_VERSION = "0.0.0-dev"


class UnityPackageConstants:
    """Constants used throughout the extractor."""

    VERSION = PACKAGE_VERSION

    # Default values
    DEFAULT_MAX_ASSET_BYTES = DEFAULT_MAX_ASSET_BYTES
    DEFAULT_MAX_PACKAGE_BYTES = DEFAULT_MAX_PACKAGE_BYTES
    DEFAULT_MAX_ASSETS = DEFAULT_MAX_ASSETS
    DEFAULT_MAX_WORKERS = 4
    DEFAULT_MAX_COMPRESSION_RATIO = 100.0
    DEFAULT_PREVIEW_MAX_BYTES = 8 * MIB
    DEFAULT_SCAN_MAX_BYTES = 5 * MIB

    # Environment variables
    ENV_PREFIX = "UNITYPACKAGE_"
    ENV_ALLOWED_ROOTS = "UNITYPACKAGE_ALLOWED_ROOTS"
