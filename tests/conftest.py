"""Shared fakes for the PDU, the nodes and the clock."""

from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

import pytest

from ac_cycle_controller import ALL_PORTS, ACCycleController, Node, PduTarget, Timings
from cycle_ledger import CycleLedger
from node_prober import PING_NO_REPLY, PING_OK, NodePowerState
from pdu_driver import CommandError, Dialect, PortState


class FakeDriver:
    """In-memory PDU: outlets follow set_port unless listed in `stuck`."""

    def __init__(self, ports: Tuple[int, ...] = ALL_PORTS, initial: PortState = PortState.ON) -> None:
        self.states: Dict[int, PortState] = {p: initial for p in ports}
        self.set_calls: List[Tuple[int, PortState]] = []
        self.get_calls: int = 0
        self.stuck: Set[int] = set()
        self.failing_sets: int = 0
        self.closed = False

    def set_port(self, port: int, desired: PortState) -> None:
        self.set_calls.append((port, desired))
        if self.failing_sets:
            self.failing_sets -= 1
            raise CommandError("timeout")
        if port not in self.stuck:
            self.states[port] = desired

    def get_port(self, port: int) -> PortState:
        self.get_calls += 1
        return self.states[port]

    def close(self) -> None:
        self.closed = True

    def sets_of(self, state: PortState) -> int:
        return sum(1 for _, s in self.set_calls if s is state)


class FakeProber:
    """Scripted nodes.

    `power` maps an address to the sequence of states returned by successive
    power_state() calls; the last one repeats. Addresses in `unreachable`
    never answer a ping; `invalid` ones fail like a bad address would.
    """

    def __init__(self, power: Optional[Dict[str, List[NodePowerState]]] = None) -> None:
        self.power: Dict[str, List[NodePowerState]] = power or {}
        self.unreachable: Set[str] = set()
        self.invalid: Set[str] = set()
        self.probes: List[str] = []
        self.queries: List[str] = []
        self.query_checks: List[bool] = []

    def probe(self, address: str) -> int:
        self.probes.append(address)
        if address in self.invalid:
            return 2
        if address in self.unreachable:
            return PING_NO_REPLY
        return PING_OK

    def is_reachable(self, address: str) -> bool:
        return self.probe(address) == PING_OK

    def power_state(self, address: str, check_reachable: bool = True) -> NodePowerState:
        self.queries.append(address)
        self.query_checks.append(check_reachable)
        script = self.power.get(address, [NodePowerState.UNKNOWN])
        if len(script) > 1:
            return script.pop(0)
        return script[0]


class FakeClock:
    def __init__(self) -> None:
        self.sleeps: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.sleeps.append(seconds)


NODES = [Node("10.0.0.11", 1), Node("10.0.0.12", 2)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(tmp_path) -> CycleLedger:
    return CycleLedger(str(tmp_path / "bmc.txt.log"))


@pytest.fixture
def make_controller(clock, ledger):
    def _make(driver: FakeDriver, prober: FakeProber, nodes: Optional[List[Node]] = None,
              ports: Tuple[int, ...] = ALL_PORTS, timings: Optional[Timings] = None,
              dialect: Dialect = Dialect.VENDOR_A) -> ACCycleController:
        pdu = PduTarget(address="10.0.0.2", dialect=dialect, ports=ports, uses_all_ports=ports == ALL_PORTS)
        return ACCycleController(
            pdu=pdu,
            nodes=nodes or NODES,
            driver=driver,
            prober=prober,
            ledger=ledger,
            timings=timings or Timings(),
            sleep=clock,
        )
    return _make
