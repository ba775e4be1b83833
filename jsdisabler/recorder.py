#!/usr/bin/env python3
#
# SPDX-License-Identifier: MIT
#
# This file is formatted with Python Black

import attr
import datetime

from pathlib import Path
from typing import Any, Dict, List

from jsdisabler import Config, Device, DeviceRegistry, EnumerationError, ancestors


@attr.s
class YamlTreeRecorder(object):
    """
    Records the parts of the device tree that matter for arbitration: every
    joystick node with its full ancestry and every device in the HID
    subsystem with its ancestry. The output can be replayed with
    :class:`jsdisabler.emulator.YamlRegistry`.

    Example output: ::

        # generated 24-10-19 14:02
        devices:
        - sysname: usb1
          subsystem: usb
          driver: usb
          children:
          - sysname: 1-2
            ...

    :param registry: the registry to record from
    :param config: subsystem names and the joystick prefix
    """

    registry: DeviceRegistry = attr.ib()
    config: Config = attr.ib(default=attr.Factory(Config))

    def _leaves(self) -> List[Device]:
        leaves = []
        for subsystem in (self.config.input_subsystem, self.config.hid_subsystem):
            try:
                devices = self.registry.enumerate(subsystem)
            except EnumerationError:
                continue
            if subsystem == self.config.input_subsystem:
                devices = [
                    d
                    for d in devices
                    if d.sysname.startswith(self.config.joystick_prefix)
                ]
            leaves.extend(devices)
        return leaves

    def as_dict(self) -> Dict[str, Any]:
        roots: List[Dict[str, Any]] = []
        nodes: Dict[str, Dict[str, Any]] = {}

        def node_for(device: Device) -> Dict[str, Any]:
            node = {"sysname": device.sysname, "subsystem": device.subsystem}
            if device.driver is not None:
                node["driver"] = device.driver
            return node

        for leaf in self._leaves():
            # root first so parents exist before their children
            chain = list(reversed([leaf] + list(ancestors(self.registry, leaf))))
            siblings = roots
            for device in chain:
                node = nodes.get(device.syspath)
                if node is None:
                    node = node_for(device)
                    nodes[device.syspath] = node
                    siblings.append(node)
                siblings = node.setdefault("children", [])

        for node in nodes.values():
            if not node["children"]:
                del node["children"]

        return {"devices": roots}

    def write(self, filename: Path) -> None:
        import yaml

        now = datetime.datetime.now().strftime("%y-%m-%d %H:%M")
        with open(filename, "w") as fd:
            fd.write(f"# generated {now}\n")
            yaml.safe_dump(self.as_dict(), fd, sort_keys=False)
