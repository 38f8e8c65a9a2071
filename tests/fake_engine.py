"""Execution engine used by the engine and CLI tests.

Loaded by name, e.g. ``--engine fake_engine:FakeEngine``.
"""

from conftest import make_device, make_test
from testfleet.node.protocol import RemoteInventory


def default_inventory() -> RemoteInventory:
    device = make_device("emulator-5554")
    return RemoteInventory(
        devices=[device],
        test_cases=[
            make_test("valid_login", device),
            make_test("bad_password", device),
            make_test("valid_login", make_device("emulator-5556")),
            make_test("open", device, cls="SettingsTest"),
        ],
    )


class FakeEngine:
    """Records what it is asked to do."""

    inventory = None
    passed = True
    error = None
    instances = []

    def __init__(self):
        self.discovered = []
        self.runs = []
        self.devices = []
        self.tests = []
        FakeEngine.instances.append(self)

    async def discover(self, settings):
        self.discovered.append(settings)
        return self.inventory if self.inventory is not None else default_inventory()

    async def run(self, settings, device_providers, suite_loaders, run_rules):
        self.runs.append(settings)
        for rule in run_rules:
            await rule.before()
        try:
            for provider in device_providers:
                self.devices.extend(provider.provide_devices())
            for loader in suite_loaders:
                self.tests.extend(loader.load_test_suite())
            if self.error is not None:
                raise self.error
            return self.passed
        finally:
            for rule in run_rules:
                await rule.after()


def broken():
    raise RuntimeError("should not be called")


not_callable = 42
