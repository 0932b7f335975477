"""
claims_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``get_workflow_config()`` is the way runtime code obtains a
    ``WorkflowConfig``.  With no argument it loads the packaged
    ``defaults.yaml``; with a path it loads that file instead.

Architecture position:
    Configuration.  Sits above ``claims_kernel`` and below
    ``claims_engines`` consumers and ``claims_services``.  The kernel
    never imports from ``claims_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every call emits a ``CLAIMS_CONFIG_TRACE`` log entry with the source
    path and checksum, tying decisions back to the configuration that
    governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from claims_config.loader import (
    compute_checksum,
    load_yaml_file,
    load_workflow_config,
    parse_workflow_config,
)
from claims_config.schema import RiskLevelThresholds, RiskWeights, WorkflowConfig

_logger = logging.getLogger("claims_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_workflow_config(path: Path | str | None = None) -> WorkflowConfig:
    """The public configuration entrypoint."""
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(source)
    config = parse_workflow_config(data)

    _logger.info(
        "CLAIMS_CONFIG_TRACE",
        extra={
            "trace_type": "CLAIMS_CONFIG_TRACE",
            "config_path": str(source),
            "checksum": compute_checksum(data),
            "hr_threshold": str(config.hr_threshold),
            "admin_threshold": str(config.admin_threshold),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "RiskLevelThresholds",
    "RiskWeights",
    "WorkflowConfig",
    "get_workflow_config",
    "load_workflow_config",
]
