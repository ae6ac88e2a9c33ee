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
Configuration class for the Unity package extractor.

Values given to the constructor win; anything left at its default is taken
from ``UNITYPACKAGE_*`` environment variables. The core never reads the
environment itself: hosts turn a ``Config`` into immutable values with
``to_limits()`` and ``to_options()``.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from ..core.models import ExtractionLimits, ExtractionOptions
from .constants import UnityPackageConstants

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


def _env(name: str) -> str | None:
    value = os.getenv(UnityPackageConstants.ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str) -> int | None:
    value = _env(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s%s=%r", UnityPackageConstants.ENV_PREFIX, name, value)
        return None


def _env_float(name: str) -> float | None:
    value = _env(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s%s=%r", UnityPackageConstants.ENV_PREFIX, name, value)
        return None


def _env_bool(name: str) -> bool | None:
    value = _env(name)
    if value is None:
        return None
    if value.lower() in _TRUE_VALUES:
        return True
    if value.lower() in _FALSE_VALUES:
        return False
    return None


@dataclass
class Config:
    """
    Configuration for the Unity package extractor.
    """

    # Limits (None means "use the default")
    max_asset_bytes: int | None = None
    max_package_bytes: int | None = None
    max_assets: int | None = None

    # Extraction Options
    organize_by_categories: bool = False
    temporary_directory: str | None = None
    max_workers: int = UnityPackageConstants.DEFAULT_MAX_WORKERS
    max_compression_ratio: float = UnityPackageConstants.DEFAULT_MAX_COMPRESSION_RATIO

    # Preview and Scanning Options
    preview_max_bytes: int = UnityPackageConstants.DEFAULT_PREVIEW_MAX_BYTES
    scan_max_bytes: int = UnityPackageConstants.DEFAULT_SCAN_MAX_BYTES
    rules_path: str | None = None
    scan_after_extract: bool = False

    # Output Options
    output_format: str = "summary"

    def __post_init__(self):
        """Load configuration from environment variables if not provided."""

        # Limits from environment
        if self.max_asset_bytes is None:
            self.max_asset_bytes = _env_int("MAX_ASSET_BYTES")
        if self.max_package_bytes is None:
            self.max_package_bytes = _env_int("MAX_PACKAGE_BYTES")
        if self.max_assets is None:
            self.max_assets = _env_int("MAX_ASSETS")

        # Extraction options from environment (only if still at default)
        if not self.organize_by_categories and _env_bool("ORGANIZE_BY_CATEGORIES"):
            self.organize_by_categories = True

        if self.temporary_directory is None:
            self.temporary_directory = _env("TEMP_DIR")

        if self.max_workers == UnityPackageConstants.DEFAULT_MAX_WORKERS:
            if (workers := _env_int("MAX_WORKERS")) is not None:
                self.max_workers = workers

        if self.max_compression_ratio == UnityPackageConstants.DEFAULT_MAX_COMPRESSION_RATIO:
            if (ratio := _env_float("MAX_COMPRESSION_RATIO")) is not None:
                self.max_compression_ratio = ratio

        # Preview and scanning from environment
        if self.preview_max_bytes == UnityPackageConstants.DEFAULT_PREVIEW_MAX_BYTES:
            if (preview_bytes := _env_int("PREVIEW_MAX_BYTES")) is not None:
                self.preview_max_bytes = preview_bytes

        if self.scan_max_bytes == UnityPackageConstants.DEFAULT_SCAN_MAX_BYTES:
            if (scan_bytes := _env_int("SCAN_MAX_BYTES")) is not None:
                self.scan_max_bytes = scan_bytes

        if self.rules_path is None:
            self.rules_path = _env("RULES_PATH")

        if not self.scan_after_extract and _env_bool("SCAN_AFTER_EXTRACT"):
            self.scan_after_extract = True

    def to_limits(self) -> ExtractionLimits:
        """Build normalized extraction limits; unset or out-of-range values fall back to defaults."""
        return ExtractionLimits.normalize(
            ExtractionLimits(
                max_asset_bytes=self.max_asset_bytes or 0,
                max_package_bytes=self.max_package_bytes or 0,
                max_assets=self.max_assets or 0,
            )
        )

    def to_options(self) -> ExtractionOptions:
        """Build the immutable options handed to the extractor."""
        return ExtractionOptions(
            organize_by_categories=self.organize_by_categories,
            temporary_directory=self.temporary_directory,
            limits=self.to_limits(),
            scan_for_malicious_content=self.scan_after_extract,
            max_workers=self.max_workers,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create configuration from environment variables.

        Returns:
            Config instance with values from environment
        """
        return cls()

    @classmethod
    def from_file(cls, config_file: Path) -> "Config":
        """
        Load configuration from .env file.

        Args:
            config_file: Path to .env file

        Returns:
            Config instance
        """
        if config_file.exists():
            load_dotenv(config_file, override=True)
        else:
            logger.warning("Config file not found: %s", config_file)

        return cls.from_env()
