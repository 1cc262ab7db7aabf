"""
Tests for the pyvisa-backed session against a fake resource manager.
"""

import pytest
import pyvisa
from pyvisa import constants

from rigol_dg.channel import ChannelModel
from rigol_dg.errors import (
    ApplyError,
    DeviceError,
    InstrumentOpenFailed,
    ReadFailed,
    ResourceManagerUnavailable,
    TransportError,
    WriteFailed,
)
from rigol_dg.families import Family
from rigol_dg.transport import DEFAULT_RESOURCE, TERMINATION, ConnectionState, VisaSession

TIMEOUT = -1073807339  # VI_ERROR_TMO


class TestConnect:
    def test_connect_configures_instrument(self, fake_visa):
        events = []
        session = VisaSession(timeout_ms=1234, log=events.append)
        session.connect()

        inst = fake_visa.instrument
        assert session.connected
        assert session.resource_id == DEFAULT_RESOURCE
        assert fake_visa.opened == [DEFAULT_RESOURCE]
        assert inst.read_termination == TERMINATION
        assert inst.write_termination == TERMINATION
        assert inst.timeout == 1234
        assert events == [f"Connected to {DEFAULT_RESOURCE}"]

    def test_open_failure_closes_resource_manager(self, fake_visa):
        fake_visa.open_error = pyvisa.errors.VisaIOError(TIMEOUT)
        session = VisaSession()

        with pytest.raises(InstrumentOpenFailed) as info:
            session.connect('USB0::bogus::INSTR')
        assert info.value.status == TIMEOUT
        assert fake_visa.closed
        assert session.state is ConnectionState.DISCONNECTED

    def test_missing_visa_library(self, monkeypatch):
        def broken(*args):
            raise OSError("Could not locate a VISA implementation")
        monkeypatch.setattr('rigol_dg.transport.pyvisa.ResourceManager', broken)

        events = []
        with pytest.raises(ResourceManagerUnavailable):
            VisaSession(log=events.append).connect()
        assert "resource manager" in events[0]

    def test_backend_is_forwarded(self, monkeypatch):
        seen = []

        def factory(*args):
            seen.append(args)
            raise OSError("no backend")
        monkeypatch.setattr('rigol_dg.transport.pyvisa.ResourceManager', factory)

        with pytest.raises(ResourceManagerUnavailable):
            VisaSession(visa_backend='@py').connect()
        assert seen == [('@py',)]

    def test_reconnect_closes_previous(self, fake_visa):
        session = VisaSession()
        session.connect()
        first = fake_visa.instrument
        session.connect()
        assert first.closed


class TestDisconnect:
    def test_returns_to_local_and_closes(self, fake_visa):
        events = []
        session = VisaSession(log=events.append)
        session.connect()
        session.disconnect()

        assert not session.connected
        assert session.resource_id is None
        assert fake_visa.instrument.ren == [constants.RENLineOperation.deassert_gtl]
        assert fake_visa.instrument.closed
        assert fake_visa.closed
        assert events[-1] == "Disconnected from the instrument"

    def test_idempotent(self, fake_visa):
        events = []
        session = VisaSession(log=events.append)
        session.disconnect()
        session.connect()
        session.disconnect()
        session.disconnect()
        assert events.count("Disconnected from the instrument") == 1

    def test_close_failure_is_reported(self, fake_visa):
        session = VisaSession()
        session.connect()

        def fail():
            raise pyvisa.errors.VisaIOError(TIMEOUT)
        fake_visa.instrument.close = fail

        with pytest.raises(TransportError):
            session.disconnect()
        assert fake_visa.closed
        assert not session.connected

    def test_context_manager(self, fake_visa):
        with VisaSession() as session:
            session.connect()
        assert fake_visa.instrument.closed


class TestSendQuery:
    def test_send_when_disconnected(self):
        events = []
        session = VisaSession(log=events.append)
        with pytest.raises(WriteFailed):
            session.send('OUTPUT1 ON')
        assert events == ["Not connected to the instrument."]

    def test_send(self, fake_visa):
        events = []
        session = VisaSession(log=events.append)
        session.connect()
        session.send('SOURCE1:FREQuency 2500.0')
        assert fake_visa.instrument.written == ['SOURCE1:FREQuency 2500.0']
        assert events[-1] == "Command sent: SOURCE1:FREQuency 2500.0"

    def test_write_error(self, fake_visa):
        session = VisaSession()
        session.connect()
        fake_visa.instrument.fail_write = True
        with pytest.raises(WriteFailed) as info:
            session.send('OUTPUT1 ON')
        assert info.value.status == TIMEOUT

    def test_query_strips_response(self, fake_visa):
        fake_visa.instrument.replies = [b'2.500000E+03\r\n']
        events = []
        session = VisaSession(log=events.append)
        session.connect()

        assert session.query('SOURCE1:FREQuency?') == '2.500000E+03'
        assert fake_visa.instrument.written == ['SOURCE1:FREQuency?']
        assert events[-1] == "Query: SOURCE1:FREQuency?, Response: 2.500000E+03"

    def test_read_timeout(self, fake_visa):
        session = VisaSession()
        session.connect()
        with pytest.raises(ReadFailed):
            session.query('OUTPUT1?')

    def test_query_when_disconnected(self):
        with pytest.raises(WriteFailed):
            VisaSession().query('*IDN?')

    def test_debug_output(self, fake_visa, capsys):
        fake_visa.instrument.replies = [b'ON\n']
        session = VisaSession(debug_level=1)
        session.connect()
        session.query('OUTPUT1?')
        err = capsys.readouterr().err
        assert "> OUTPUT1?" in err
        assert "< ON" in err

    def test_error_queue_checked_at_debug_level_2(self, fake_visa):
        fake_visa.instrument.replies = [b'-113,"Undefined header"\n']
        session = VisaSession(debug_level=2)
        session.connect()
        with pytest.raises(DeviceError) as info:
            session.send('SOURCE1:BOGUS 1')
        assert info.value.status == -113
        assert fake_visa.instrument.written[-1] == ':SYSTem:ERRor?'

    def test_no_error_passes_at_debug_level_2(self, fake_visa):
        fake_visa.instrument.replies = [b'0,"No error"\n']
        session = VisaSession(debug_level=2)
        session.connect()
        session.send('OUTPUT1 ON')

    def test_error_queue_read_failure_is_a_transport_error(self, fake_visa):
        session = VisaSession(debug_level=2)
        session.connect()
        with pytest.raises(ReadFailed) as info:
            session.send('OUTPUT1 ON')
        assert info.value.status == TIMEOUT

    def test_error_queue_failure_does_not_abort_apply(self, fake_visa):
        session = VisaSession(debug_level=2)
        session.connect()

        err = ChannelModel(session, 1, Family.NOISE).apply()
        assert isinstance(err, ApplyError)
        assert all(isinstance(e, ReadFailed) for _, e in err.errors)
        commands = [c for c in fake_visa.instrument.written if c != ':SYSTem:ERRor?']
        assert commands == [
            'SOURCE1:APPLY:NOIS',
            'SOURCE1:VOLTAGE 1.0',
            'SOURCE1:VOLTAGE:OFFSET 0.0',
            'OUTPUT1 OFF',
        ]

    def test_unrecognized_error_response_is_logged(self, fake_visa, capsys):
        fake_visa.instrument.replies = [b'garbled\n']
        events = []
        session = VisaSession(log=events.append, debug_level=2)
        session.connect()
        session.send('OUTPUT1 ON')
        assert "Unrecognized error queue response: garbled" in events
        assert "Error response" not in capsys.readouterr().err


class TestListResources:
    def test_lists_resources(self, fake_visa):
        fake_visa.resources = ('USB0::A::INSTR', 'TCPIP0::1.2.3.4::INSTR')
        session = VisaSession()
        assert list(session.list_resources()) == ['USB0::A::INSTR', 'TCPIP0::1.2.3.4::INSTR']

    def test_discovery_manager_is_reused(self, fake_visa):
        session = VisaSession()
        list(session.list_resources())
        session.connect()
        session.disconnect()
        assert fake_visa.closed

    def test_fails_soft(self, monkeypatch):
        def broken(*args):
            raise OSError("no VISA")
        monkeypatch.setattr('rigol_dg.transport.pyvisa.ResourceManager', broken)
        assert list(VisaSession().list_resources()) == []

    def test_listing_error_is_logged(self, fake_visa):
        def fail(query='?*'):
            raise pyvisa.errors.VisaIOError(TIMEOUT)
        fake_visa.list_resources = fail

        events = []
        assert list(VisaSession(log=events.append).list_resources()) == []
        assert events[0].startswith("Failed to find resources")
