#!/usr/bin/env python3
#
# SPDX-License-Identifier: MIT
#
# This file is formatted with Python Black

import attr
import errno
import logging
import os

from pathlib import Path

from jsdisabler import Config, DriverControl, DriverControlError

logger = logging.getLogger(__name__)

# The kernel refuses the write with one of these if the device is not
# eligible, e.g. already bound or already gone
KERNEL_REJECTED = (errno.ENODEV, errno.EBUSY, errno.EINVAL, errno.ENOENT)


@attr.s
class SysfsDriverControl(DriverControl):
    """
    Binds and unbinds devices by writing their sysname to the generic
    driver's ``bind`` and ``unbind`` files, see :attr:`jsdisabler.Config.bind_path`.
    """

    config: Config = attr.ib(default=attr.Factory(Config))

    def _write(self, path: Path, sysname: str) -> None:
        try:
            fd = os.fdopen(os.open(path, os.O_WRONLY), "wb", buffering=0)
        except OSError as e:
            raise DriverControlError(path=path, sysname=sysname, message=str(e))

        with fd:
            try:
                fd.write(sysname.encode("ascii"))
            except OSError as e:
                if e.errno not in KERNEL_REJECTED:
                    raise DriverControlError(
                        path=path, sysname=sysname, message=str(e)
                    )
                logger.info(f"Kernel rejected {sysname} for {path}: {e.strerror}")
                return
        logger.debug(f"{path}: wrote {sysname}")

    def bind(self, sysname: str) -> None:
        self._write(self.config.bind_path, sysname)

    def unbind(self, sysname: str) -> None:
        self._write(self.config.unbind_path, sysname)


@attr.s
class DryRunDriverControl(DriverControl):
    """
    Logs the requests but never writes to sysfs.
    """

    config: Config = attr.ib(default=attr.Factory(Config))

    def bind(self, sysname: str) -> None:
        logger.info(f"dry run: not writing {sysname} to {self.config.bind_path}")

    def unbind(self, sysname: str) -> None:
        logger.info(f"dry run: not writing {sysname} to {self.config.unbind_path}")
