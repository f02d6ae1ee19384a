"""Ask the kernel to re-read a block device's partition table.

Run after an image has been written to ``$DEST_DISK``. Failures are reported
but the process always exits zero.
"""

from __future__ import annotations

import argparse
import fcntl
import os
import sys

from loguru import logger

# _IO(0x12, 95) from <linux/fs.h>
BLKRRPART = 0x125F

DEST_DISK_ENV = "DEST_DISK"


def reprobe(disk: str) -> bool:
    """Flush pending writes to ``disk`` and issue BLKRRPART.

    Returns:
        True when the kernel accepted the re-read request
    """
    try:
        fd = os.open(disk, os.O_WRONLY | os.O_CREAT, 0o644)
    except OSError as exc:
        logger.error(f"unable to open the target disk {disk}: {exc}")
        return False

    try:
        try:
            os.fsync(fd)
        except OSError as exc:
            logger.error(f"failed to sync the block device: {exc}")
            return False

        try:
            fcntl.ioctl(fd, BLKRRPART, 0)
        except OSError as exc:
            logger.error(f"error re-probing the partitions for the specified device: {exc}")
            return False
    finally:
        os.close(fd)

    logger.info(f"Re-read partition table of {disk}")
    return True


def main(argv: list[str] | None = None) -> None:
    """Re-probe $DEST_DISK (or ``--disk``); always returns normally."""
    parser = argparse.ArgumentParser(description="Re-read the partition table of $DEST_DISK.")
    parser.add_argument("--disk", default=None, help=f"block device (default: ${DEST_DISK_ENV})")
    args = parser.parse_args(argv)

    # results are reported on stdout
    logger.remove()
    handler_id = logger.add(sys.stdout, format="{message}", level="INFO")
    try:
        disk = args.disk or os.environ.get(DEST_DISK_ENV, "")
        if not disk:
            logger.error(f"{DEST_DISK_ENV} is not set")
            return
        reprobe(disk)
    finally:
        logger.remove(handler_id)


if __name__ == "__main__":
    main()
