#!/usr/bin/env python3
#
# SPDX-License-Identifier: MIT
#
# This file is formatted with Python Black

import attr
import logging
import pyudev

from typing import List, Optional

from jsdisabler import Device, DeviceRegistry, EnumerationError, RegistryUnavailable

logger = logging.getLogger(__name__)


def device_from_udev(udev_device: pyudev.Device) -> Device:
    return Device(
        sysname=udev_device.sys_name,
        subsystem=udev_device.subsystem,
        driver=udev_device.driver,
        syspath=udev_device.sys_path,
        handle=udev_device,
    )


@attr.s
class UdevRegistry(DeviceRegistry):
    """
    A :class:`jsdisabler.DeviceRegistry` backed by libudev.

        >>> registry = UdevRegistry.create()  # doctest: +SKIP
        >>> [d.sysname for d in registry.enumerate("input")]  # doctest: +SKIP
        ['input5', 'event4', 'js0']
    """

    _context: pyudev.Context = attr.ib()

    @classmethod
    def create(cls) -> "UdevRegistry":
        """
        :raises jsdisabler.RegistryUnavailable: if no udev context can be
            created
        """
        try:
            context = pyudev.Context()
        except (ImportError, OSError) as e:
            raise RegistryUnavailable(f"Could not acquire udev context: {e}")
        return cls(context)

    def enumerate(self, subsystem: str) -> List[Device]:
        try:
            devices = list(self._context.list_devices(subsystem=subsystem))
        except OSError as e:
            raise EnumerationError(subsystem=subsystem, message=str(e))

        logger.debug(f"{subsystem}: {len(devices)} devices")
        return [device_from_udev(d) for d in devices]

    def parent_of(self, device: Device) -> Optional[Device]:
        udev_device = device.handle
        if udev_device is None:
            udev_device = pyudev.Devices.from_sys_path(self._context, device.syspath)

        parent = udev_device.parent
        if parent is None:
            return None
        return device_from_udev(parent)
