#!/usr/bin/env python3
"""
PDU Driver

SNMP port control for the two supported PDU command dialects:
ServerTech/APC (Sentry) and TrippLite. Both are exposed through the same
set_port / get_port interface working on the logical PortState enum.
"""

import asyncio
import logging
from enum import Enum, IntEnum
from typing import Dict, Optional, Union

from pysnmp.hlapi.v3arch.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    get_cmd,
    set_cmd,
)
from pysnmp.proto.rfc1902 import Integer

logger = logging.getLogger('pdu_driver')

# Constants
SNMP_PORT = 161
SNMP_TIMEOUT = 1
SNMP_RETRIES = 0


class CommandError(Exception):
    """Raised when a PDU command fails or its response can't be understood"""


class InvalidDialect(ValueError):
    """Raised when the dialect selector is not one of the supported values"""


class PortState(Enum):
    """Logical outlet state, independent of the PDU's raw status codes"""
    OFF = 'off'
    ON = 'on'


class Dialect(IntEnum):
    """PDU command dialect, as selected on the command line"""
    VENDOR_A = 0  # ServerTech/APC
    VENDOR_B = 1  # TrippLite

    @classmethod
    def parse(cls, value: Union[int, str]) -> 'Dialect':
        """Parse a 0/1 selector into a Dialect"""
        try:
            return cls(int(str(value).strip()))
        except ValueError:
            raise InvalidDialect(
                f"[ {value} ] is not a valid number. Select 0 for ServerTech/APC and 1 for TrippLite PDU."
            ) from None

    @property
    def label(self) -> str:
        return 'ServerTech/APC' if self is Dialect.VENDOR_A else 'TrippLite'


class SnmpClient:
    """Minimal SNMP v2c client for integer GET/SET against one agent

    One event loop and one SnmpEngine are kept for the client's lifetime,
    call close() when done.
    """

    def __init__(self, host: str, community: str, port: int = SNMP_PORT,
                 timeout: float = SNMP_TIMEOUT, retries: int = SNMP_RETRIES):
        self.host = host
        self.community = community
        self.port = port
        self.timeout = timeout
        self.retries = retries
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._engine: Optional[SnmpEngine] = None

    def __repr__(self) -> str:
        return f"SnmpClient(host={self.host}, port={self.port})"

    def get_int(self, oid: str) -> int:
        """SNMP GET -> int value"""
        var_binds = self._run(get_cmd, oid)
        try:
            return int(var_binds[0][1])
        except (IndexError, TypeError, ValueError) as e:
            raise CommandError(f"Unparsable SNMP response for {oid} from {self.host}: {var_binds!r}") from e

    def set_int(self, oid: str, value: int) -> None:
        """SNMP SET with an integer value"""
        self._run(set_cmd, oid, value)

    def close(self) -> None:
        """Release the SNMP engine and its event loop"""
        if self._engine is not None:
            self._engine.close_dispatcher()
            self._engine = None
        if self._loop is not None:
            self._loop.close()
            self._loop = None

    def _run(self, command, oid: str, value: Optional[int] = None):
        verb = 'GET' if value is None else f"SET {value}"
        logger.debug(f"SNMP {verb} {oid} on {self.host}:{self.port}")
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
        try:
            error_indication, error_status, error_index, var_binds = self._loop.run_until_complete(
                self._send(command, oid, value)
            )
        except Exception as e:
            raise CommandError(f"SNMP request to {self.host} failed: {e}") from e
        if error_indication:
            raise CommandError(f"SNMP request to {self.host} failed: {error_indication}")
        if error_status:
            raise CommandError(
                f"SNMP error from {self.host}: {error_status.prettyPrint()} at {error_index}"
            )
        return var_binds

    async def _send(self, command, oid: str, value: Optional[int] = None):
        # The engine binds to the running loop, so it is created inside it
        if self._engine is None:
            self._engine = SnmpEngine()
        if value is None:
            object_type = ObjectType(ObjectIdentity(oid))
        else:
            object_type = ObjectType(ObjectIdentity(oid), Integer(value))
        transport = await UdpTransportTarget.create(
            (self.host, self.port), timeout=self.timeout, retries=self.retries
        )
        return await command(
            self._engine,
            CommunityData(self.community, mpModel=1),
            transport,
            ContextData(),
            object_type,
        )


class PduDriver:
    """Base class for a PDU dialect; subclasses only supply the code tables"""

    dialect: Dialect
    default_community: str
    control_oid: str
    status_oid: str
    set_codes: Dict[PortState, int]
    status_codes: Dict[int, PortState]

    def __init__(self, address: str, client: Optional[SnmpClient] = None,
                 community: Optional[str] = None, port: int = SNMP_PORT,
                 timeout: float = SNMP_TIMEOUT, retries: int = SNMP_RETRIES):
        self.address = address
        self.client = client or SnmpClient(
            address, community or self.default_community, port=port,
            timeout=timeout, retries=retries,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(address={self.address})"

    def close(self) -> None:
        self.client.close()

    def set_port(self, port: int, desired: PortState) -> None:
        """Switch one outlet to the desired logical state"""
        self.client.set_int(f"{self.control_oid}.{port}", self.set_codes[desired])

    def get_port(self, port: int) -> PortState:
        """Read one outlet's logical state"""
        raw = self.client.get_int(f"{self.status_oid}.{port}")
        return self.normalize(raw)

    def normalize(self, raw: int) -> PortState:
        """Map a raw status code onto PortState"""
        try:
            return self.status_codes[raw]
        except KeyError:
            raise CommandError(f"Unknown status code {raw} for {self.dialect.label} PDU {self.address}") from None


class VendorADriver(PduDriver):
    """ServerTech/APC Sentry outlets: status 0 = off, 1 = on"""
    dialect = Dialect.VENDOR_A
    default_community = 'private'
    control_oid = '1.3.6.1.4.1.1718.3.2.3.1.11.1.1'
    status_oid = '1.3.6.1.4.1.1718.3.2.3.1.5.1.1'
    set_codes = {PortState.ON: 1, PortState.OFF: 2}
    status_codes = {0: PortState.OFF, 1: PortState.ON}


class VendorBDriver(PduDriver):
    """TrippLite outlets: codes are inverted, 1 = off, 0 = on"""
    dialect = Dialect.VENDOR_B
    default_community = 'tripplite'
    control_oid = '1.3.6.1.4.1.850.100.1.10.2.1.4'
    status_oid = '1.3.6.1.4.1.850.100.1.10.2.1.4'
    set_codes = {PortState.ON: 0, PortState.OFF: 1}
    status_codes = {1: PortState.OFF, 0: PortState.ON}


DRIVERS = {
    Dialect.VENDOR_A: VendorADriver,
    Dialect.VENDOR_B: VendorBDriver,
}


def create_driver(dialect: Union[Dialect, int, str], address: str, **kwargs) -> PduDriver:
    """Build the driver for a dialect selector"""
    if not isinstance(dialect, Dialect):
        dialect = Dialect.parse(dialect)
    return DRIVERS[dialect](address, **kwargs)
