#!/usr/bin/env python3
#
# SPDX-License-Identifier: MIT
#
# This file is formatted with Python Black
#

from jsdisabler import Action, Arbitrator, Config, Device, ancestors
from jsdisabler.emulator import YamlDriverControl, YamlRegistry

import pytest


class CountingRegistry(YamlRegistry):
    """
    Wraps the YAML tree and counts the lookups so we can check for
    short-circuiting.
    """

    def __init__(self, yml):
        super().__init__(yml)
        self.parent_lookups = 0
        self.enumerations = []

    def enumerate(self, subsystem):
        self.enumerations.append(subsystem)
        return super().enumerate(subsystem)

    def parent_of(self, device):
        self.parent_lookups += 1
        return super().parent_of(device)


def xpad_tree():
    """
    An xpad gamepad on usb 1-1 and a generic HID joystick on usb 1-2
    """
    return {
        "devices": [
            {
                "sysname": "1-1",
                "subsystem": "usb",
                "driver": "xpad",
                "children": [
                    {
                        "sysname": "input3",
                        "subsystem": "input",
                        "children": [{"sysname": "js0", "subsystem": "input"}],
                    }
                ],
            },
            {
                "sysname": "1-2",
                "subsystem": "usb",
                "driver": "usb",
                "children": [
                    {
                        "sysname": "0003:046D:C216.0002",
                        "subsystem": "hid",
                        "driver": "hid-generic",
                        "children": [
                            {
                                "sysname": "input4",
                                "subsystem": "input",
                                "children": [
                                    {"sysname": "js1", "subsystem": "input"},
                                    {"sysname": "event4", "subsystem": "input"},
                                ],
                            }
                        ],
                    }
                ],
            },
        ]
    }


def generic_only_tree():
    tree = xpad_tree()
    del tree["devices"][0]
    return tree


def arbitrator_for(yml):
    registry = CountingRegistry(yml)
    control = YamlDriverControl(registry)
    return Arbitrator(registry=registry, control=control)


def test_config_defaults():
    config = Config()
    assert config.specialized_driver == "xpad"
    assert config.generic_driver == "hid-generic"
    assert config.joystick_prefix == "js"
    assert str(config.bind_path) == "/sys/bus/hid/drivers/hid-generic/bind"
    assert str(config.unbind_path) == "/sys/bus/hid/drivers/hid-generic/unbind"


def test_config_from_dict():
    config = Config.from_dict(
        {"specialized-driver": "xone", "sysfs-root": "/tmp/sys"}
    )
    assert config.specialized_driver == "xone"
    assert str(config.bind_path) == "/tmp/sys/bus/hid/drivers/hid-generic/bind"

    with pytest.raises(Config.Error):
        Config.from_dict({"no-such-key": "foo"})

    with pytest.raises(Config.Error):
        Config.from_dict({"generic-driver": 3})

    with pytest.raises(Config.Error):
        Config.from_dict({"joystick-prefix": "joy"})

    with pytest.raises(Config.Error):
        Config.from_dict(["xpad"])


def test_config_from_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("generic-driver: hid-other\n")
    config = Config.create_from_file(path)
    assert config.generic_driver == "hid-other"
    assert config.specialized_driver == "xpad"

    path.write_text("")
    assert Config.create_from_file(path) == Config()

    path.write_text("specialized-driver: [\n")
    with pytest.raises(Config.Error):
        Config.create_from_file(path)


def test_ancestors():
    registry = YamlRegistry(xpad_tree())
    js1 = registry.find("js1")
    names = [p.sysname for p in ancestors(registry, js1)]
    assert names == ["input4", "0003:046D:C216.0002", "1-2"]

    # a fresh walk for each call
    it1 = ancestors(registry, js1)
    it2 = ancestors(registry, js1)
    assert next(it1).sysname == "input4"
    assert next(it1).sysname == "0003:046D:C216.0002"
    assert next(it2).sysname == "input4"


def test_ancestors_no_parent():
    registry = YamlRegistry({"devices": [{"sysname": "js0", "subsystem": "input"}]})
    assert list(ancestors(registry, registry.find("js0"))) == []


def test_ancestors_is_lazy():
    registry = CountingRegistry(xpad_tree())
    it = ancestors(registry, registry.find("js1"))
    assert registry.parent_lookups == 0
    next(it)
    assert registry.parent_lookups == 1


def test_joystick_prefix():
    yml = {
        "devices": [
            {"sysname": "js0", "subsystem": "input"},
            {"sysname": "joystick1", "subsystem": "input"},
            {"sysname": "jsx", "subsystem": "input"},
            {"sysname": "event3", "subsystem": "input"},
            {"sysname": "mouse0", "subsystem": "input"},
            {"sysname": "js2", "subsystem": "hid"},
        ]
    }
    arbitrator = arbitrator_for(yml)
    names = [d.sysname for d in arbitrator.joystick_devices()]
    # "joystick1" starts with "jo", not "js"
    assert names == ["js0", "jsx"]


def test_specialized_driver_active():
    assert arbitrator_for(xpad_tree()).is_specialized_driver_active()
    assert not arbitrator_for(generic_only_tree()).is_specialized_driver_active()


def test_specialized_driver_on_non_joystick():
    # xpad bound but the child isn't a joystick node
    yml = {
        "devices": [
            {
                "sysname": "1-1",
                "subsystem": "usb",
                "driver": "xpad",
                "children": [{"sysname": "event2", "subsystem": "input"}],
            }
        ]
    }
    assert not arbitrator_for(yml).is_specialized_driver_active()


def test_isolated_joystick():
    yml = {"devices": [{"sysname": "js0", "subsystem": "input", "driver": "xpad"}]}
    # the joystick itself is not part of its ancestry
    assert not arbitrator_for(yml).is_specialized_driver_active()


def test_specialized_driver_short_circuit():
    arbitrator = arbitrator_for(xpad_tree())
    registry = arbitrator.registry
    assert arbitrator.is_specialized_driver_active()
    # js0 -> input3 -> 1-1 (xpad) is found without walking past it, and js1
    # is never looked at
    assert registry.parent_lookups == 2


def test_classifier_fails_open():
    tree = xpad_tree()
    tree["failing-subsystems"] = ["input"]
    arbitrator = arbitrator_for(tree)
    assert not arbitrator.is_specialized_driver_active()

    outcome = arbitrator.run()
    assert outcome.specialized_active is False
    assert arbitrator.registry.enumerations[-1] == "hid"


def test_disable_pass():
    arbitrator = arbitrator_for(xpad_tree())
    actions = arbitrator.disable_generic_joysticks()
    assert actions == [Action(Action.Type.UNBIND, "0003:046D:C216.0002")]
    assert arbitrator.control.actions == actions
    assert arbitrator.registry.find("0003:046D:C216.0002").driver is None


def test_disable_pass_nearest_generic_ancestor():
    yml = {
        "devices": [
            {
                "sysname": "C",
                "subsystem": "usb",
                "driver": "xpad",
                "children": [
                    {
                        "sysname": "B",
                        "subsystem": "hid",
                        "driver": "hid-generic",
                        "children": [
                            {
                                "sysname": "A",
                                "subsystem": "hid",
                                "driver": "hid-generic",
                                "children": [{"sysname": "js0", "subsystem": "input"}],
                            }
                        ],
                    }
                ],
            }
        ]
    }
    arbitrator = arbitrator_for(yml)
    assert arbitrator.is_specialized_driver_active()
    assert arbitrator.disable_generic_joysticks() == [Action(Action.Type.UNBIND, "A")]
    assert arbitrator.registry.find("B").driver == "hid-generic"


def test_disable_pass_enumeration_failure():
    tree = xpad_tree()
    tree["failing-subsystems"] = ["input"]
    arbitrator = arbitrator_for(tree)
    assert arbitrator.disable_generic_joysticks() == []


def test_enable_pass():
    yml = {
        "devices": [
            {"sysname": "hid0", "subsystem": "hid"},
            {"sysname": "hid1", "subsystem": "hid", "driver": "some-other-driver"},
            {"sysname": "js0", "subsystem": "input"},
        ]
    }
    arbitrator = arbitrator_for(yml)
    assert not arbitrator.is_specialized_driver_active()
    assert arbitrator.enable_generic_devices() == [Action(Action.Type.BIND, "hid0")]
    assert arbitrator.registry.find("hid1").driver == "some-other-driver"


def test_enable_pass_enumeration_failure():
    yml = {
        "devices": [{"sysname": "hid0", "subsystem": "hid"}],
        "failing-subsystems": ["hid"],
    }
    arbitrator = arbitrator_for(yml)
    outcome = arbitrator.run()
    assert outcome.specialized_active is False
    assert outcome.actions == []


@pytest.mark.parametrize("tree", [xpad_tree, generic_only_tree])
def test_run_is_idempotent(tree):
    yml = tree()
    # an unbound device for the enable pass to pick up
    yml["devices"].append({"sysname": "0003:045E:028E.0005", "subsystem": "hid"})

    arbitrator = arbitrator_for(yml)
    first = arbitrator.run()
    assert first.actions
    snapshot = arbitrator.registry.devices

    second = arbitrator.run()
    assert second.specialized_active == first.specialized_active
    assert second.actions == []
    assert arbitrator.registry.devices == snapshot
    assert arbitrator.control.actions == first.actions


def test_run_after_unplug():
    tree = xpad_tree()
    arbitrator = arbitrator_for(tree)
    assert arbitrator.run().actions == [
        Action(Action.Type.UNBIND, "0003:046D:C216.0002")
    ]

    # xpad controller is gone, the generic joystick must come back
    registry = arbitrator.registry
    xpad = registry.find("1-1")
    registry.set_driver(xpad, None)
    outcome = arbitrator.run()
    assert outcome.specialized_active is False
    assert outcome.actions == [Action(Action.Type.BIND, "0003:046D:C216.0002")]
    assert registry.find("0003:046D:C216.0002").driver == "hid-generic"


def test_custom_driver_names():
    yml = {
        "devices": [
            {
                "sysname": "1-1",
                "subsystem": "usb",
                "driver": "xone",
                "children": [{"sysname": "js0", "subsystem": "input"}],
            }
        ]
    }
    registry = YamlRegistry(yml)
    arbitrator = Arbitrator(
        registry=registry,
        control=YamlDriverControl(registry),
        config=Config(specialized_driver="xone"),
    )
    assert arbitrator.is_specialized_driver_active()
    assert not arbitrator_for(yml).is_specialized_driver_active()


def test_action_str():
    assert str(Action(Action.Type.BIND, "hid0")) == "bind hid0"
    assert str(Action(Action.Type.UNBIND, "hid1")) == "unbind hid1"


def test_device_equality_ignores_handle():
    assert Device("js0", "input", handle=object()) == Device("js0", "input")
