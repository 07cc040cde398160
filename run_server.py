import argparse
import os
import sys

import uvicorn

from bin_locator.check_storage import check_storage
from bin_locator.errors import PartialSweepFailure
from bin_locator.scheduler import SweepTrigger
from bin_locator.service import get_services
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


def maybe_check_storage() -> None:
    """
    Optionally run the storage preflight. Controlled by:
    - BINLOC_SKIP_STORAGE_CHECK=true to skip entirely (useful in dev/tests)
    """
    if os.getenv("BINLOC_SKIP_STORAGE_CHECK", "false").lower() in ("1", "true", "yes"):
        logger.info("Skipping storage preflight (BINLOC_SKIP_STORAGE_CHECK=true)")
        return

    try:
        check_storage(get_services())
    except SystemExit:
        logger.error("Storage preflight failed; set BINLOC_SKIP_STORAGE_CHECK=true to bypass during dev/tests.")
        raise


def sweep_once() -> int:
    """Run a single backup sweep and return a process exit code."""
    services = get_services()
    services.startup(start_scheduler=False)
    report = services.scheduler.run_sweep(SweepTrigger.MANUAL)
    logger.info(f"Sweep summary: {report.summary()}")
    try:
        report.raise_for_failures()
    except PartialSweepFailure as exc:
        logger.error(str(exc))
        return 1
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Bin GPS locator service")
    parser.add_argument("--sweep-once", action="store_true", help="run one backup sweep and exit")
    args = parser.parse_args(argv)

    setup_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        job_name="sweep_once" if args.sweep_once else "bin_locator",
    )
    maybe_check_storage()

    if args.sweep_once:
        return sweep_once()

    uvicorn.run(
        "bin_locator.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
