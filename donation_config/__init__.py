"""
donation_config -- single public entrypoint for pipeline configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned
    ``PipelineConfig`` by injection; none of them read YAML files or
    environment variables directly.

Resolution order:
    1. explicit ``path`` argument
    2. ``DONATION_PIPELINE_CONFIG`` environment variable
    3. packaged ``defaults.yaml``

Audit relevance:
    Every successful call emits a ``pipeline_config_loaded`` log entry with
    the source path and the SHA-256 checksum of the parsed document.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from donation_config.loader import VALID_CYCLES, load_config, parse_config
from donation_config.schema import (
    BankFee,
    CycleConfig,
    FeeSchedule,
    GroupingThresholds,
    MonitorConfig,
    PipelineConfig,
    ProviderFee,
    SettlementConfig,
    StrategyConfig,
    TimeoutConfig,
)

_logger = logging.getLogger("donation_kernel.config")

CONFIG_ENV_VAR = "DONATION_PIPELINE_CONFIG"
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> PipelineConfig:
    """The ONLY public configuration entrypoint.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If a value fails validation.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_CONFIG_PATH
    resolved = Path(path)

    config = load_config(resolved)

    _logger.info(
        "pipeline_config_loaded",
        extra={
            "config_path": str(resolved),
            "checksum": config.checksum,
            "provider_count": len(config.strategy.providers),
            "default_cycle": config.cycles.default_cycle,
        },
    )
    return config


__all__ = [
    "BankFee",
    "CONFIG_ENV_VAR",
    "CycleConfig",
    "FeeSchedule",
    "GroupingThresholds",
    "MonitorConfig",
    "PipelineConfig",
    "ProviderFee",
    "SettlementConfig",
    "StrategyConfig",
    "TimeoutConfig",
    "VALID_CYCLES",
    "get_active_config",
    "load_config",
    "parse_config",
]
