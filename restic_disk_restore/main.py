import argparse
import os
import sys
from pathlib import Path

from restic_disk_restore.__version__ import __version__
from restic_disk_restore.config import settings
from restic_disk_restore.logging import LoggerFactory, setup_logging
from restic_disk_restore.restore import run_restore
from restic_disk_restore.services.restic import ResticStore
from restic_disk_restore.storage.exceptions import ConfigurationError, RestoreError


def build_parser():
    parser = argparse.ArgumentParser(
        prog="restic-disk-restore",
        description="Restore a whole system disk from a restic snapshot, "
        "preserving partition, LUKS and filesystem UUIDs",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Config file (default: {settings.CONFIG_PATH})",
    )
    parser.add_argument("--target", help="Target disk, overrides TARGET_DISK")
    parser.add_argument("--snapshot", help="Snapshot ID, overrides SNAPSHOT")
    parser.add_argument(
        "--plan",
        action="store_true",
        help="Load metadata and print the restore plan without touching any disk",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def require_root():
    if os.geteuid() != 0:
        raise ConfigurationError("This tool must be run as root.")


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    try:
        require_root()
        config = settings.load_config(
            args.config,
            overrides={"target_disk": args.target, "snapshot": args.snapshot},
        )
        store = ResticStore(config.repository_url)
        run_restore(config, store, plan_only=args.plan)
    except RestoreError as error:
        log.error(f"FATAL: {error}")
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted; target device may be partially written.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
