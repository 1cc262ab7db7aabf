"""Shared fixtures: a recording transport and a fake pyvisa backend."""

from typing import Dict, List

import pytest
import pyvisa

from rigol_dg.errors import ReadFailed, WriteFailed


class FakeTransport:
    """
    In-memory transport that records every command.

    ``responses`` maps query strings to replies; ``fail_on`` holds command
    prefixes whose send (or query) raises.
    """

    def __init__(self, responses: Dict[str, str] = None):
        self.sent: List[str] = []
        self.queries: List[str] = []
        self.responses = dict(responses or {})
        self.fail_on: List[str] = []
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self, resource_id: str) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def _fails(self, command: str) -> bool:
        return any(command.startswith(prefix) for prefix in self.fail_on)

    def send(self, command: str) -> None:
        if not self._connected or self._fails(command):
            raise WriteFailed(f"Failed to write {command!r}")
        self.sent.append(command)

    def query(self, command: str) -> str:
        self.queries.append(command)
        if self._fails(command) or command not in self.responses:
            raise ReadFailed(f"No response to {command!r}")
        return self.responses[command]

    def list_resources(self):
        yield 'USB0::0x1AB1::0x0644::FAKE::INSTR'


class FakeInstrument:
    def __init__(self, replies=()):
        self.written: List[str] = []
        self.replies = list(replies)
        self.closed = False
        self.ren = []
        self.fail_write = False

    def write(self, command):
        if self.fail_write:
            raise pyvisa.errors.VisaIOError(-1073807339)
        self.written.append(command)

    def read_raw(self, size=None):
        if not self.replies:
            raise pyvisa.errors.VisaIOError(-1073807339)
        return self.replies.pop(0)

    def control_ren(self, mode):
        self.ren.append(mode)

    def close(self):
        self.closed = True


class FakeResourceManager:
    def __init__(self, instrument=None, open_error=None, resources=()):
        self.instrument = instrument or FakeInstrument()
        self.open_error = open_error
        self.resources = tuple(resources)
        self.closed = False
        self.opened = []

    def open_resource(self, resource_id):
        if self.open_error is not None:
            raise self.open_error
        self.opened.append(resource_id)
        return self.instrument

    def list_resources(self, query='?*'):
        return self.resources

    def close(self):
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fake_visa(monkeypatch):
    """Replace ``pyvisa.ResourceManager`` and return the manager it hands out."""
    rm = FakeResourceManager()
    monkeypatch.setattr('rigol_dg.transport.pyvisa.ResourceManager', lambda *args: rm)
    return rm
