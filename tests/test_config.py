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
Tests for configuration module.
"""

import os
from pathlib import Path
from unittest.mock import patch

from unitypackage_extractor.config.config import Config
from unitypackage_extractor.config.constants import UnityPackageConstants
from unitypackage_extractor.core.models import (
    DEFAULT_MAX_ASSET_BYTES,
    DEFAULT_MAX_ASSETS,
    DEFAULT_MAX_PACKAGE_BYTES,
    ExtractionLimits,
)


def _clean_env() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if not k.startswith(UnityPackageConstants.ENV_PREFIX)}


class TestConfigInitialization:
    """Test Config class initialization."""

    def test_config_with_defaults(self):
        with patch.dict("os.environ", _clean_env(), clear=True):
            config = Config()

            assert config.max_asset_bytes is None
            assert config.max_package_bytes is None
            assert config.max_assets is None
            assert not config.organize_by_categories
            assert config.temporary_directory is None
            assert config.max_workers == 4
            assert config.max_compression_ratio == 100.0
            assert config.preview_max_bytes == UnityPackageConstants.DEFAULT_PREVIEW_MAX_BYTES
            assert config.rules_path is None
            assert not config.scan_after_extract

    def test_config_with_custom_values(self):
        config = Config(max_asset_bytes=1024, organize_by_categories=True, max_workers=8)

        assert config.max_asset_bytes == 1024
        assert config.organize_by_categories
        assert config.max_workers == 8


class TestConfigFromEnvironment:
    """Test reading UNITYPACKAGE_* variables."""

    def test_config_from_env_variables(self):
        env = _clean_env()
        env.update(
            {
                "UNITYPACKAGE_MAX_ASSET_BYTES": "1048576",
                "UNITYPACKAGE_MAX_PACKAGE_BYTES": "4194304",
                "UNITYPACKAGE_MAX_ASSETS": "10",
                "UNITYPACKAGE_ORGANIZE_BY_CATEGORIES": "yes",
                "UNITYPACKAGE_TEMP_DIR": "/var/tmp/upx",
                "UNITYPACKAGE_MAX_WORKERS": "2",
                "UNITYPACKAGE_MAX_COMPRESSION_RATIO": "50",
                "UNITYPACKAGE_PREVIEW_MAX_BYTES": "4096",
                "UNITYPACKAGE_SCAN_MAX_BYTES": "2048",
                "UNITYPACKAGE_RULES_PATH": "/etc/upx/rules",
                "UNITYPACKAGE_SCAN_AFTER_EXTRACT": "on",
            }
        )
        with patch.dict("os.environ", env, clear=True):
            config = Config.from_env()

        assert config.max_asset_bytes == 1048576
        assert config.max_package_bytes == 4194304
        assert config.max_assets == 10
        assert config.organize_by_categories
        assert config.temporary_directory == "/var/tmp/upx"
        assert config.max_workers == 2
        assert config.max_compression_ratio == 50.0
        assert config.preview_max_bytes == 4096
        assert config.scan_max_bytes == 2048
        assert config.rules_path == "/etc/upx/rules"
        assert config.scan_after_extract

    def test_explicit_values_win(self):
        env = _clean_env()
        env.update({"UNITYPACKAGE_MAX_ASSETS": "10", "UNITYPACKAGE_MAX_WORKERS": "2"})
        with patch.dict("os.environ", env, clear=True):
            config = Config(max_assets=99, max_workers=6)

        assert config.max_assets == 99
        assert config.max_workers == 6

    def test_invalid_values_are_ignored(self):
        env = _clean_env()
        env.update(
            {
                "UNITYPACKAGE_MAX_ASSETS": "lots",
                "UNITYPACKAGE_MAX_COMPRESSION_RATIO": "high",
                "UNITYPACKAGE_ORGANIZE_BY_CATEGORIES": "maybe",
                "UNITYPACKAGE_RULES_PATH": "   ",
            }
        )
        with patch.dict("os.environ", env, clear=True):
            config = Config()

        assert config.max_assets is None
        assert config.max_compression_ratio == 100.0
        assert not config.organize_by_categories
        assert config.rules_path is None

    def test_from_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("UNITYPACKAGE_MAX_ASSETS=7\nUNITYPACKAGE_SCAN_AFTER_EXTRACT=true\n")
        with patch.dict("os.environ", _clean_env(), clear=True):
            config = Config.from_file(env_file)

        assert config.max_assets == 7
        assert config.scan_after_extract

    def test_from_missing_file(self, tmp_path):
        with patch.dict("os.environ", _clean_env(), clear=True):
            config = Config.from_file(tmp_path / "missing.env")
        assert config.max_assets is None


class TestConfigConversion:
    """Test conversion into core value objects."""

    def test_to_limits_defaults(self):
        with patch.dict("os.environ", _clean_env(), clear=True):
            limits = Config().to_limits()

        assert limits == ExtractionLimits(DEFAULT_MAX_ASSET_BYTES, DEFAULT_MAX_PACKAGE_BYTES, DEFAULT_MAX_ASSETS)

    def test_to_limits_normalizes(self):
        limits = Config(max_asset_bytes=4096, max_package_bytes=1024, max_assets=-3).to_limits()

        assert limits.max_asset_bytes == 4096
        assert limits.max_package_bytes == 4096
        assert limits.max_assets == DEFAULT_MAX_ASSETS

    def test_to_options(self, tmp_path):
        config = Config(
            organize_by_categories=True,
            temporary_directory=str(tmp_path),
            max_workers=3,
            scan_after_extract=True,
            max_assets=5,
        )
        options = config.to_options()

        assert options.organize_by_categories
        assert Path(options.temporary_directory) == tmp_path
        assert options.max_workers == 3
        assert options.scan_for_malicious_content
        assert options.limits.max_assets == 5
