"""Reachability checks for the live source and the backup store."""

import sys
from typing import Any, Dict

from bin_locator.errors import StorageUnavailable
from bin_locator.service import Services
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="check_storage")


def _probe(component, backend: str) -> Dict[str, Any]:
    """Ping one component and describe the result."""
    status: Dict[str, Any] = {"backend": backend, "reachable": False, "error": None}
    try:
        component.ping()
    except StorageUnavailable as e:
        status["error"] = str(e)
        return status
    status["reachable"] = True
    return status


def get_storage_status(services: Services) -> Dict[str, Any]:
    """
    Non-fatal probe of both storage collaborators.

    Returns a dict like:
    {
      "ok": bool,
      "liveSource": {"backend": "sql", "reachable": bool, "error": str | None},
      "backupStore": {"backend": "redis", "reachable": bool, "error": str | None},
    }

    This NEVER sys.exit(). Suitable for health checks.
    """
    live = _probe(services.live_source, services.live_backend)
    backup = _probe(services.backup_store, services.backup_backend)
    return {
        "ok": live["reachable"] and backup["reachable"],
        "liveSource": live,
        "backupStore": backup,
    }


def check_storage(services: Services) -> None:
    """
    "Hard" check for startup.

    Fails with sys.exit(1) if either the live source or the backup store is
    unreachable.
    """
    status = get_storage_status(services)
    if status["ok"]:
        logger.info(
            f"Storage reachable (live source: {services.live_backend}, backup store: {services.backup_backend})"
        )
        return

    for name in ("liveSource", "backupStore"):
        part = status[name]
        if not part["reachable"]:
            logger.error(f"ERROR: {name} ({part['backend']}) is unreachable: {part['error']}")
    logger.error("Set BINLOC_SKIP_STORAGE_CHECK=true to bypass during dev/tests.")
    sys.exit(1)
