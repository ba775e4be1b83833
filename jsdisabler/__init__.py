#!/usr/bin/env python3
#
# SPDX-License-Identifier: MIT
#
# This file is formatted with Python Black

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import attr
import enum
import logging
import yaml


logger = logging.getLogger(__name__)


class RegistryUnavailable(Exception):
    """
    Error indicating that no session with the device registry could be
    established at all, e.g. because libudev is missing.

    .. note:: This error is fatal for the current run.

    .. attribute:: message

        The error message
    """

    def __init__(self, message: str):
        self.message = message

    def __str__(self):
        return self.message


@attr.s
class EnumerationError(Exception):
    """
    Error indicating that scanning a single subsystem failed. Callers treat
    this as if the subsystem had no devices.
    """

    subsystem: str = attr.ib()
    message: str = attr.ib()


@attr.s
class DriverControlError(Exception):
    """
    Error indicating that a driver control file could not be opened or
    written. The control files always exist when the generic driver is
    loaded, so this error is not recoverable.
    """

    path: Path = attr.ib()
    sysname: str = attr.ib()
    message: str = attr.ib()


@attr.s
class Config(object):
    """
    The configuration of an arbitration run. The defaults match a stock
    kernel with the ``xpad`` and ``hid-generic`` drivers.

        >>> config = Config()
        >>> str(config.unbind_path)
        '/sys/bus/hid/drivers/hid-generic/unbind'
    """

    class Error(Exception):
        pass

    specialized_driver: str = attr.ib(default="xpad")
    generic_driver: str = attr.ib(default="hid-generic")
    joystick_prefix: str = attr.ib(default="js")
    input_subsystem: str = attr.ib(default="input")
    hid_subsystem: str = attr.ib(default="hid")
    sysfs_root: Path = attr.ib(default=Path("/sys"), converter=Path)

    @joystick_prefix.validator
    def _validate_joystick_prefix(self, attribute, value):
        if len(value) != 2:
            raise Config.Error(f"joystick-prefix must be two characters: '{value}'")

    @property
    def driver_directory(self) -> Path:
        bus = self.sysfs_root / "bus" / self.hid_subsystem
        return bus / "drivers" / self.generic_driver

    @property
    def bind_path(self) -> Path:
        return self.driver_directory / "bind"

    @property
    def unbind_path(self) -> Path:
        return self.driver_directory / "unbind"

    @classmethod
    def create_from_file(cls, filename: Path) -> "Config":
        with open(filename) as fd:
            try:
                yml = yaml.safe_load(fd)
            except yaml.YAMLError as e:
                raise Config.Error(f"Invalid YAML: {e}")
        return cls.from_dict(yml or {})

    @classmethod
    def from_dict(cls, yml: Dict[str, Any]) -> "Config":
        """
        Create a config from the parsed YAML. Keys use dashes instead of
        underscores, e.g. ``specialized-driver``.

        :raises Config.Error: for unknown keys or invalid values
        """
        if not isinstance(yml, dict):
            raise Config.Error("Config must be a mapping")

        known = {a.name.replace("_", "-"): a.name for a in attr.fields(cls)}
        kwargs = {}
        for key, value in yml.items():
            try:
                name = known[key]
            except KeyError:
                raise Config.Error(f"Unknown config key '{key}'")
            if not isinstance(value, str) or not value:
                raise Config.Error(f"Config key '{key}' must be a non-empty string")
            kwargs[name] = value

        return cls(**kwargs)


@attr.s(frozen=True)
class Device(object):
    """
    A read-only view of one node in the device tree. The parent is not
    stored here, use :meth:`DeviceRegistry.parent_of` or :func:`ancestors`.
    """

    sysname: str = attr.ib()
    subsystem: Optional[str] = attr.ib(default=None)
    driver: Optional[str] = attr.ib(default=None)
    syspath: str = attr.ib(default="")
    handle: Any = attr.ib(default=None, eq=False, repr=False)
    """Adapter-specific object backing this device, e.g. a ``pyudev.Device``"""


@attr.s(frozen=True)
class Action(object):
    """
    A bind or unbind request issued against the generic driver.
    """

    class Type(enum.Enum):
        BIND = enum.auto()
        UNBIND = enum.auto()

    type: "Action.Type" = attr.ib()
    sysname: str = attr.ib()

    def __str__(self):
        return f"{self.type.name.lower()} {self.sysname}"


@attr.s
class Outcome(object):
    specialized_active: bool = attr.ib()
    actions: List[Action] = attr.ib(default=attr.Factory(list))


class DeviceRegistry(object):
    """
    The interface to the system's device tree. Implementations must return
    fresh data on every call.
    """

    def enumerate(self, subsystem: str) -> List[Device]:
        """
        :return: all devices in the given subsystem
        :raises EnumerationError: if the subsystem cannot be scanned
        """
        raise NotImplementedError

    def parent_of(self, device: Device) -> Optional[Device]:
        raise NotImplementedError


class DriverControl(object):
    """
    The interface to bind and unbind devices from the generic driver.
    """

    def bind(self, sysname: str) -> None:
        raise NotImplementedError

    def unbind(self, sysname: str) -> None:
        raise NotImplementedError


def ancestors(registry: DeviceRegistry, device: Device) -> Iterator[Device]:
    """
    Yield the parents of ``device``, nearest first, until the root of the
    device tree is reached. ::

        >>> [p.sysname for p in ancestors(registry, js0)]  # doctest: +SKIP
        ['input7', '1-2:1.0', '1-2', 'usb1']
    """
    parent = registry.parent_of(device)
    while parent is not None:
        yield parent
        parent = registry.parent_of(parent)


@attr.s
class Arbitrator(object):
    """
    Decides whether the specialized driver currently provides a joystick and
    converges the generic driver's bindings accordingly.

    Example: ::

        arbitrator = Arbitrator(registry=UdevRegistry.create(),
                                control=SysfsDriverControl(Config()))
        outcome = arbitrator.run()

    :param registry: the :class:`DeviceRegistry` to query
    :param control: the :class:`DriverControl` to issue bind/unbind requests to
    :param config: the :class:`Config`, defaults are used if omitted
    """

    registry: DeviceRegistry = attr.ib()
    control: DriverControl = attr.ib()
    config: Config = attr.ib(default=attr.Factory(Config))

    def _enumerate(self, subsystem: str) -> List[Device]:
        try:
            return self.registry.enumerate(subsystem)
        except EnumerationError as e:
            logger.warning(f"Failed to scan subsystem {subsystem}: {e.message}")
            return []

    def joystick_devices(self) -> Iterator[Device]:
        """
        Yield all joystick nodes in the input subsystem, i.e. those with a
        sysname starting with the joystick prefix.
        """
        prefix = self.config.joystick_prefix
        for device in self._enumerate(self.config.input_subsystem):
            if device.sysname.startswith(prefix):
                yield device

    def _first_ancestor_with_driver(
        self, device: Device, driver: str
    ) -> Optional[Device]:
        return next(
            (p for p in ancestors(self.registry, device) if p.driver == driver),
            None,
        )

    def is_specialized_driver_active(self) -> bool:
        """
        :return: ``True`` if any joystick node has an ancestor bound to the
            specialized driver
        """
        for js in self.joystick_devices():
            parent = self._first_ancestor_with_driver(
                js, self.config.specialized_driver
            )
            if parent is not None:
                logger.debug(
                    f"{js.sysname} is provided by {parent.sysname} ({parent.driver})"
                )
                return True
        return False

    def disable_generic_joysticks(self) -> List[Action]:
        """
        Unbind the nearest generic-driver ancestor of every joystick node.
        Joysticks without such an ancestor are left as-is.
        """
        actions = []
        for js in self.joystick_devices():
            parent = self._first_ancestor_with_driver(js, self.config.generic_driver)
            if parent is None:
                logger.debug(f"{js.sysname}: no {self.config.generic_driver} parent")
                continue

            logger.info(f"{js.sysname}: unbinding {parent.sysname}")
            self.control.unbind(parent.sysname)
            actions.append(Action(Action.Type.UNBIND, parent.sysname))
        return actions

    def enable_generic_devices(self) -> List[Action]:
        """
        Bind every HID device without a driver to the generic driver. Devices
        that have any driver bound are never touched.
        """
        actions = []
        for device in self._enumerate(self.config.hid_subsystem):
            if device.driver is not None:
                continue

            logger.info(f"{device.sysname}: binding to {self.config.generic_driver}")
            self.control.bind(device.sysname)
            actions.append(Action(Action.Type.BIND, device.sysname))
        return actions

    def run(self) -> Outcome:
        """
        Classify the current system state and perform the matching pass.
        """
        active = self.is_specialized_driver_active()
        if active:
            actions = self.disable_generic_joysticks()
        else:
            actions = self.enable_generic_devices()
        return Outcome(specialized_active=active, actions=actions)
