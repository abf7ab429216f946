"""Health check files for background workers (read by container probes)."""

import json
import logging
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from shared.config import get_settings

logger = logging.getLogger(__name__)


def update_health_check(
    worker_name: str,
    last_run: datetime,
    status: str,
    stats: dict[str, Any],
) -> Path:
    """
    Write ``<HEALTH_CHECK_DIR>/<worker_name>_health.json`` atomically.

    The file is written to a temp name and renamed so a probe never reads a
    half-written document. Failures are logged, never raised.
    """
    health_dir = Path(get_settings().HEALTH_CHECK_DIR)
    health_file = health_dir / f"{worker_name}_health.json"
    temp_file = health_dir / f"{worker_name}_health.{time.time_ns()}.tmp"

    health_data = {
        "last_run": last_run.isoformat(),
        "status": status,
        **stats,
        "last_updated": datetime.now(UTC).isoformat(),
    }

    try:
        health_dir.mkdir(parents=True, exist_ok=True)
        temp_file.write_text(json.dumps(health_data, indent=2, default=str))
        temp_file.replace(health_file)
        logger.debug(f"Health check file updated: {health_file}")
    except OSError as e:
        logger.error(f"Failed to write health check file: {e}", exc_info=True)

    return health_file
