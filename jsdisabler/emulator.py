#!/usr/bin/env python3
#
# SPDX-License-Identifier: MIT
#
# This file is formatted with Python Black

import attr
import logging
import pathlib
import yaml

from typing import Any, Dict, List, Optional

from jsdisabler import (
    Action,
    Config,
    Device,
    DeviceRegistry,
    DriverControl,
    EnumerationError,
)

logger = logging.getLogger(__name__)


class InvalidTreeError(Exception):
    """
    Indicates that the device tree description cannot be parsed.
    """

    pass


class YamlRegistry(DeviceRegistry):
    """
    A :class:`jsdisabler.DeviceRegistry` with a device tree described in
    YAML, typically previously recorded by
    :class:`jsdisabler.recorder.YamlTreeRecorder`. ::

        devices:
          - sysname: 1-2
            subsystem: usb
            driver: xpad
            children:
              - sysname: input7
                subsystem: input
                children:
                  - { sysname: js0, subsystem: input }
        failing-subsystems: [hid]

    Devices are enumerated depth first, in the order they appear. A
    subsystem listed in ``failing-subsystems`` raises
    :class:`jsdisabler.EnumerationError` when enumerated.

    :param yml: the parsed YAML document
    """

    def __init__(self, yml: Dict[str, Any]):
        if not isinstance(yml, dict) or not isinstance(yml.get("devices"), list):
            raise InvalidTreeError("Missing 'devices' list")

        self._devices: Dict[str, Device] = {}
        self._parents: Dict[str, Optional[str]] = {}
        failing = yml.get("failing-subsystems") or []
        if not isinstance(failing, list):
            raise InvalidTreeError("'failing-subsystems' must be a list")
        self.failing_subsystems: List[str] = [str(s) for s in failing]

        for entry in yml["devices"]:
            self._add(entry, None)

    @classmethod
    def create_from_file(cls, filename: pathlib.Path) -> "YamlRegistry":
        with open(filename) as fd:
            try:
                yml = yaml.safe_load(fd)
            except yaml.YAMLError as e:
                raise InvalidTreeError(f"Failed to parse {filename}: {e}")
        return cls(yml)

    def _add(self, entry: Dict[str, Any], parent: Optional[Device]) -> None:
        if not isinstance(entry, dict):
            raise InvalidTreeError(f"Device entry is not a mapping: {entry}")
        try:
            sysname = str(entry["sysname"])
        except KeyError:
            raise InvalidTreeError(f"Device entry without sysname: {entry}")

        prefix = parent.syspath if parent is not None else "/devices"
        device = Device(
            sysname=sysname,
            subsystem=entry.get("subsystem"),
            driver=entry.get("driver"),
            syspath=f"{prefix}/{sysname}",
        )
        if device.syspath in self._devices:
            raise InvalidTreeError(f"Duplicate device {device.syspath}")

        self._devices[device.syspath] = device
        self._parents[device.syspath] = parent.syspath if parent else None
        children = entry.get("children") or []
        if not isinstance(children, list):
            raise InvalidTreeError(f"'children' of {sysname} must be a list")
        for child in children:
            self._add(child, device)

    @property
    def devices(self) -> List[Device]:
        return list(self._devices.values())

    def enumerate(self, subsystem: str) -> List[Device]:
        if subsystem in self.failing_subsystems:
            raise EnumerationError(subsystem=subsystem, message="simulated failure")
        return [d for d in self._devices.values() if d.subsystem == subsystem]

    def parent_of(self, device: Device) -> Optional[Device]:
        parent = self._parents.get(device.syspath)
        if parent is None:
            return None
        return self._devices[parent]

    def find(self, sysname: str, subsystem: Optional[str] = None) -> Optional[Device]:
        for device in self._devices.values():
            if device.sysname != sysname:
                continue
            if subsystem is None or device.subsystem == subsystem:
                return device
        return None

    def set_driver(self, device: Device, driver: Optional[str]) -> None:
        self._devices[device.syspath] = attr.evolve(device, driver=driver)


@attr.s
class YamlDriverControl(DriverControl):
    """
    A :class:`jsdisabler.DriverControl` that applies bind and unbind requests
    to a :class:`YamlRegistry` the way the kernel would: only unbound
    devices on the HID bus can be bound and only devices bound to the
    generic driver can be unbound. Other requests are ignored.

    All requests that changed the tree are available in :attr:`actions`.
    """

    registry: YamlRegistry = attr.ib()
    config: Config = attr.ib(default=attr.Factory(Config))
    actions: List[Action] = attr.ib(init=False, default=attr.Factory(list))

    def bind(self, sysname: str) -> None:
        device = self.registry.find(sysname, self.config.hid_subsystem)
        if device is None or device.driver is not None:
            logger.info(f"bind {sysname}: no such unbound device, ignoring")
            return
        self.registry.set_driver(device, self.config.generic_driver)
        self.actions.append(Action(Action.Type.BIND, sysname))

    def unbind(self, sysname: str) -> None:
        device = self.registry.find(sysname, self.config.hid_subsystem)
        if device is None or device.driver != self.config.generic_driver:
            logger.info(
                f"unbind {sysname}: not bound to {self.config.generic_driver}, ignoring"
            )
            return
        self.registry.set_driver(device, None)
        self.actions.append(Action(Action.Type.UNBIND, sysname))
