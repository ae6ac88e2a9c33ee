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
Quota checks for extraction jobs.

The checks are pure: they compare counters kept by the caller against
normalized ``ExtractionLimits`` and report a breach. ``enforce`` turns a
breach into a ``LimitExceededError``.
"""

import logging
from dataclasses import dataclass

from .exceptions import LimitExceededError
from .models import ExtractionLimits, LimitKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimitBreach:
    """Details of a quota that would be exceeded."""

    kind: LimitKind
    limit: int
    actual: int


def check_asset_bytes(limits: ExtractionLimits, actual: int) -> LimitBreach | None:
    """Check a single asset's size against ``max_asset_bytes``."""
    if actual > limits.max_asset_bytes:
        return LimitBreach(LimitKind.ASSET_BYTES, limits.max_asset_bytes, actual)
    return None


def check_package_bytes(limits: ExtractionLimits, current_total: int, incoming: int) -> LimitBreach | None:
    """Check whether writing *incoming* more bytes would exceed ``max_package_bytes``."""
    projected = current_total + incoming
    if projected > limits.max_package_bytes:
        return LimitBreach(LimitKind.PACKAGE_BYTES, limits.max_package_bytes, projected)
    return None


def check_asset_count(limits: ExtractionLimits, current_count: int) -> LimitBreach | None:
    """Check whether accepting one more asset would exceed ``max_assets``."""
    projected = current_count + 1
    if projected > limits.max_assets:
        return LimitBreach(LimitKind.ASSET_COUNT, limits.max_assets, projected)
    return None


def enforce(breach: LimitBreach | None, asset_path: str | None = None) -> None:
    """Raise ``LimitExceededError`` for a breach; no-op for ``None``."""
    if breach is not None:
        logger.error(
            "Limit exceeded | kind=%s | limit=%d | actual=%d | asset='%s'",
            breach.kind.value,
            breach.limit,
            breach.actual,
            asset_path,
        )
        raise LimitExceededError(breach.kind, breach.limit, breach.actual, asset_path=asset_path)
