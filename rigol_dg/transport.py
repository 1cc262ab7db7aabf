"""
Command/response transport to a single instrument.

``Transport`` is the capability the rest of the package depends on;
``VisaSession`` implements it on top of pyvisa. The session owns one
resource manager handle and one instrument handle, translates VISA failures
into ``TransportError`` subclasses and never retries.
"""

import sys
import threading
from enum import Enum
from typing import Callable, Iterator, Optional, Protocol

import pyvisa
from pyvisa import constants

from .errors import (
    DeviceError,
    InstrumentOpenFailed,
    ReadFailed,
    ResourceManagerUnavailable,
    TransportError,
    WriteFailed,
)

DEFAULT_RESOURCE = 'USB0::0x1AB1::0x0644::DG2P224100508::INSTR'
READ_BUFFER_SIZE = 1024
DEFAULT_TIMEOUT_MS = 2000
TERMINATION = '\n'

# Errors pyvisa raises for missing libraries, bad resource strings and I/O
_VISA_ERRORS = (pyvisa.errors.Error, OSError, ValueError)

LogFn = Callable[[str], None]


def _no_log(message: str) -> None:
    pass


def _status(exc: BaseException) -> Optional[int]:
    code = getattr(exc, 'error_code', None)
    return int(code) if code is not None else None


class ConnectionState(Enum):
    DISCONNECTED = 0
    CONNECTED = 1


class Transport(Protocol):
    """Opaque command/response channel to one instrument."""

    @property
    def connected(self) -> bool: ...

    def connect(self, resource_id: str) -> None: ...

    def disconnect(self) -> None: ...

    def send(self, command: str) -> None: ...

    def query(self, command: str) -> str: ...

    def list_resources(self) -> Iterator[str]: ...


class VisaSession:
    """
    pyvisa-backed transport session.

    Example:
        session = VisaSession(log=print)
        session.connect('USB0::0x1AB1::0x0644::DG2P224100508::INSTR')
        session.send('OUTPUT1 ON')
        print(session.query('SOURCE1:FREQuency?'))
        session.disconnect()

    All I/O goes through one lock, so a session may be shared with a
    multi-threaded host as long as every call goes through this object.
    """

    def __init__(self, visa_backend: Optional[str] = None,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 log: Optional[LogFn] = None, debug_level: int = 0):
        """
        Args:
            visa_backend: pyvisa backend string, e.g. "@py" for pyvisa-py.
                None selects the default VISA library.
            timeout_ms: I/O timeout applied to the instrument handle.
            log: Single-argument callback receiving human-readable events.
            debug_level: Debug verbosity level:
                0 = no debug output
                1 = print SCPI traffic to stderr
                2 = also check the instrument error queue after each write
        """
        self.visa_backend = visa_backend
        self.timeout_ms = timeout_ms
        self.debug_level = debug_level
        self._log = log or _no_log
        self._lock = threading.RLock()
        self._rm = None
        self._inst = None
        self._resource_id: Optional[str] = None
        self.state = ConnectionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def resource_id(self) -> Optional[str]:
        """Identifier of the connected resource, if any."""
        return self._resource_id

    def _open_resource_manager(self):
        try:
            if self.visa_backend is None:
                return pyvisa.ResourceManager()
            return pyvisa.ResourceManager(self.visa_backend)
        except _VISA_ERRORS as e:
            self._log(f"Failed to open the VISA resource manager: {e}")
            raise ResourceManagerUnavailable(
                f"Failed to open the VISA resource manager: {e}", _status(e)) from e

    def connect(self, resource_id: str = DEFAULT_RESOURCE) -> None:
        """
        Open the resource manager and then the instrument.

        Any existing connection is closed first. On failure the session is
        left disconnected and no handle stays open.

        Raises:
            ResourceManagerUnavailable: The VISA library could not be loaded.
            InstrumentOpenFailed: The instrument could not be opened.
        """
        with self._lock:
            if self._inst is not None:
                self.disconnect()

            # Reuse a manager opened earlier by list_resources()
            rm = self._rm if self._rm is not None else self._open_resource_manager()
            self._rm = None
            try:
                inst = rm.open_resource(resource_id)
                inst.read_termination = TERMINATION
                inst.write_termination = TERMINATION
                inst.timeout = self.timeout_ms
            except _VISA_ERRORS as e:
                self._log(f"Failed to open the instrument {resource_id}: {e}")
                try:
                    rm.close()
                except _VISA_ERRORS as close_error:
                    self._log(f"Failed to close the resource manager: {close_error}")
                raise InstrumentOpenFailed(
                    f"Failed to open the instrument {resource_id}: {e}", _status(e)) from e

            self._rm = rm
            self._inst = inst
            self._resource_id = resource_id
            self.state = ConnectionState.CONNECTED
            self._log(f"Connected to {resource_id}")

    def disconnect(self) -> None:
        """
        Return the instrument to local control and close all handles.

        Idempotent: disconnecting a session that was never connected is a no-op.
        """
        with self._lock:
            inst, rm = self._inst, self._rm
            self._inst = None
            self._rm = None
            was_connected = self.connected
            self.state = ConnectionState.DISCONNECTED
            self._resource_id = None

            close_error = None
            if inst is not None:
                # Not every interface type supports REN control
                control_ren = getattr(inst, 'control_ren', None)
                if control_ren is not None:
                    try:
                        control_ren(constants.RENLineOperation.deassert_gtl)
                    except _VISA_ERRORS as e:
                        self._log(f"Could not return instrument to local mode: {e}")
                try:
                    inst.close()
                except _VISA_ERRORS as e:
                    self._log(f"Failed to close the instrument: {e}")
                    close_error = e

            if rm is not None:
                try:
                    rm.close()
                except _VISA_ERRORS as e:
                    self._log(f"Failed to close the resource manager: {e}")

            if close_error is not None:
                raise TransportError(
                    f"Failed to close the instrument: {close_error}", _status(close_error)
                ) from close_error
            if was_connected:
                self._log("Disconnected from the instrument")

    def _require_connection(self, command: str) -> None:
        if not self.connected or self._inst is None:
            self._log("Not connected to the instrument.")
            raise WriteFailed(f"Not connected; cannot send {command!r}")

    def _write(self, command: str) -> None:
        if self.debug_level:
            print(f"> {command}", file=sys.stderr)
        try:
            # write() appends the termination and issues a single write call
            self._inst.write(command)
        except _VISA_ERRORS as e:
            # includes UnicodeEncodeError for non-ASCII commands
            self._log(f"Failed to write to the instrument: {e}")
            raise WriteFailed(f"Failed to write {command!r}: {e}", _status(e)) from e

    def _read(self, command: str) -> str:
        try:
            raw = self._inst.read_raw(READ_BUFFER_SIZE)
        except _VISA_ERRORS as e:
            self._log(f"Failed to read from the instrument: {e}")
            raise ReadFailed(f"Failed to read response to {command!r}: {e}", _status(e)) from e
        response = raw.decode('latin-1').strip()
        if self.debug_level:
            print(f"< {response}", file=sys.stderr)
        return response

    def _check_error(self, last_cmd: str = "") -> None:
        """
        Check the SCPI error queue and raise if an error is pending.

        Only called when debug_level >= 2 to help diagnose issues.
        """
        self._write(':SYSTem:ERRor?')
        error_response = self._read(':SYSTem:ERRor?')
        # Error format: "code,message" e.g. "0,No error" or "-113,Undefined header"
        try:
            code_str, message = error_response.split(',', 1)
            code = int(code_str)
        except ValueError:
            self._log(f"Unrecognized error queue response: {error_response}")
            return
        if code != 0:
            cmd_info = f" after command: {last_cmd}" if last_cmd else ""
            self._log(f"SCPI Error {code}: {message}{cmd_info}")
            raise DeviceError(f"SCPI Error {code}: {message}{cmd_info}", code)

    def send(self, command: str) -> None:
        """
        Write one command line to the instrument.

        Raises:
            WriteFailed: Not connected, or the write reported an error.
            DeviceError: debug_level >= 2 and the instrument flagged an error.
        """
        with self._lock:
            self._require_connection(command)
            self._write(command)
            self._log(f"Command sent: {command}")
            if self.debug_level >= 2:
                self._check_error(command)

    def query(self, command: str) -> str:
        """
        Write a query and return the single-line response, stripped.

        Raises:
            WriteFailed: Not connected, or the write reported an error.
            ReadFailed: The response could not be read.
        """
        with self._lock:
            self._require_connection(command)
            self._write(command)
            response = self._read(command)
            self._log(f"Query: {command}, Response: {response}")
            return response

    def list_resources(self, query: str = '?*') -> Iterator[str]:
        """
        Lazily yield the resource identifiers VISA can discover.

        A resource manager is opened on demand and kept for later use.
        Discovery is advisory: on failure the error is logged and the
        sequence ends early (or is empty).
        """
        try:
            with self._lock:
                if self._rm is None:
                    self._rm = self._open_resource_manager()
                resources = self._rm.list_resources(query)
        except ResourceManagerUnavailable:
            return
        except _VISA_ERRORS as e:
            self._log(f"Failed to find resources: {e}")
            return
        yield from resources

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.disconnect()
