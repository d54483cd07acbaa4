#!/usr/bin/env python3
"""
AC Cycle Controller

Repeatedly power-cycles every node of a multi-node chassis through the
outlets of a networked PDU, to stress-test A/C on/off behaviour. Each cycle
waits for all nodes to power off, switches the PDU ports off and on again,
waits for every BMC to come back, and checks that every node powered on.
Completed cycles are counted in a ledger file so numbering survives restarts.
"""

import argparse
import dataclasses
import datetime
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from prettytable import PrettyTable

from cycle_ledger import CycleLedger, LedgerError
from node_prober import (
    DEFAULT_PASSWORD,
    DEFAULT_USERNAME,
    PING_NO_REPLY,
    PING_OK,
    NodePowerState,
    NodeProber,
    create_prober,
)
from pdu_driver import (
    SNMP_PORT,
    SNMP_RETRIES,
    SNMP_TIMEOUT,
    CommandError,
    Dialect,
    InvalidDialect,
    PduDriver,
    PortState,
    create_driver,
)
from poll_engine import PollResult, ThresholdExceeded, poll_until

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('ac_cycle_controller')

# Constants
VERSION = '0.5'
CONFIG_FILE = 'config.yaml'
MAX_PORT = 8
ALL_PORTS = tuple(range(1, MAX_PORT + 1))
ATTEMPT_THRESHOLD = 1800
PING_RETRIES = 15

# Color echo
LRED = '\033[1;31m'
LGREEN = '\033[1;32m'
NC = '\033[0m'


def colorize(text: str, color: str) -> str:
    """Wrap text in an ANSI color when stdout is a terminal"""
    if sys.stdout.isatty():
        return f"{color}{text}{NC}"
    return text


class ACCycleError(Exception):
    """Base class for conditions that stop the test run"""


class ConfigError(ACCycleError):
    """Raised for missing or malformed input files and configuration"""


class InvalidPort(ACCycleError):
    """Raised when PDU port numbers are outside 1..8"""

    def __init__(self, ports: List[str]):
        self.ports = ports
        super().__init__('\n'.join(f"PDU Port Number [ {p} ] is invalid." for p in ports))


class UnreachablePdu(ACCycleError):
    """Raised when the PDU doesn't answer a ping before the test starts"""

    def __init__(self, address: str, return_code: int):
        self.address = address
        self.return_code = return_code
        if return_code == PING_NO_REPLY:
            message = f"The PDU IP [ {address} ] is unreachable. Please check IP and/or network settings."
        else:
            message = f"Invalid IP address [ {address} ]"
        super().__init__(message)


class NodeUnreachable(ACCycleError):
    """Raised when one or more BMCs fail the pre-flight ping; lists all of them"""

    def __init__(self, source: str, failures: List[Tuple['Node', str]]):
        self.source = source
        self.failures = failures
        super().__init__(
            f"{len(failures)} BMC IP(s) in {source} failed the reachability check: "
            + ', '.join(node.address for node, _ in failures)
        )


class PowerOnFailed(ACCycleError):
    """Raised when reachable nodes don't report power on after the ports came back"""

    def __init__(self, addresses: List[str]):
        self.addresses = addresses
        super().__init__(f"Node(s) did not power on: {', '.join(addresses)}")


@dataclass(frozen=True)
class PduTarget:
    """Class representing the PDU under test and the outlets it switches"""
    address: str
    dialect: Dialect
    ports: Tuple[int, ...] = ALL_PORTS
    uses_all_ports: bool = True


@dataclass(frozen=True)
class Node:
    """Class representing one node, identified by its BMC address"""
    address: str
    line_number: int = 0


@dataclass(frozen=True)
class Timings:
    """Delays (seconds) and attempt budgets for every wait in a cycle"""
    node_off_interval: float = 1
    node_off_attempts: int = ATTEMPT_THRESHOLD
    ping_retries: int = PING_RETRIES
    ping_interval: float = 1
    off_settle: float = 10
    off_retry_delay: float = 10
    off_attempts: int = 30
    cooldown: float = 30
    on_settle: float = 5
    on_retry_delay: float = 5
    on_attempts: int = 10
    warmup: float = 120
    reachable_interval: float = 1
    reachable_attempts: int = ATTEMPT_THRESHOLD
    verify_delay: float = 5


@dataclass
class Settings:
    """Values read from the optional YAML configuration file"""
    probe_method: str = 'ipmi'
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    ssh_port: int = 22
    power_command: str = 'power status'
    snmp_community: Optional[str] = None
    snmp_port: int = SNMP_PORT
    snmp_timeout: float = SNMP_TIMEOUT
    snmp_retries: int = SNMP_RETRIES
    timings: Timings = field(default_factory=Timings)
    pdu: Optional[PduTarget] = None
    nodes: Optional[List[Node]] = None


class CycleState(Enum):
    """Steps of one power cycle"""
    WAIT_ALL_OFF = 'waiting for all nodes off'
    POWER_OFF_PORTS = 'powering off ports'
    CONFIRM_OFF = 'confirming ports off'
    COOLDOWN = 'cooldown'
    POWER_ON_PORTS = 'powering on ports'
    CONFIRM_ON = 'confirming ports on'
    WARMUP = 'waiting for BMCs'
    WAIT_REACHABLE = 'waiting for BMCs reachable'
    VERIFY_ON = 'verifying nodes on'
    FAIL = 'failed'


# ----------------------------------------------------------------------
# Input files
# ----------------------------------------------------------------------

def _read_lines(path: str, role: str) -> List[Tuple[int, str]]:
    """Return (line number, text) for every non-blank line of an input file"""
    if not os.path.isfile(path):
        raise ConfigError(f"{role} [ {path} ] not found!")
    with open(path, 'r') as f:
        lines = [(n, line.strip()) for n, line in enumerate(f, start=1) if line.strip()]
    if not lines:
        raise ConfigError(f"{role} is empty!")
    return lines


def parse_ports(tokens: List[Any]) -> Tuple[int, ...]:
    """Validate explicit port numbers; an empty list selects all ports"""
    if not tokens:
        return ALL_PORTS
    if len(tokens) > MAX_PORT:
        raise ConfigError(
            f"{len(tokens)} ports listed. Are you using a PDU with more than {MAX_PORT} ports? "
            f"All {MAX_PORT} ports are used automatically when you don't specify any ports."
        )
    invalid = [str(t) for t in tokens if str(t).strip() not in {str(p) for p in ALL_PORTS}]
    if invalid:
        raise InvalidPort(invalid)
    ports: List[int] = []
    for token in tokens:
        port = int(str(token).strip())
        if port in ports:
            logger.warning(f"PDU port {port} listed more than once, using it once")
            continue
        ports.append(port)
    return tuple(ports)


def load_pdu_file(path: str, dialect: Dialect) -> PduTarget:
    """Read the PDU address (line 1) and optional ports (following lines)"""
    lines = _read_lines(path, 'PDU IP AND PORTS FILE')
    address = lines[0][1]
    port_tokens = [text for _, text in lines[1:]]
    return PduTarget(
        address=address,
        dialect=dialect,
        ports=parse_ports(port_tokens),
        uses_all_ports=not port_tokens,
    )


def load_node_file(path: str) -> List[Node]:
    """Read one BMC address per line, keeping file order"""
    return [Node(address=text, line_number=n) for n, text in _read_lines(path, 'BMC IP LIST FILE')]


# ----------------------------------------------------------------------
# YAML configuration
# ----------------------------------------------------------------------

def _process_template_var(value: Any, defaults: Dict[str, Any], key: Optional[str] = None) -> Any:
    """Process template variables in configuration, and use default if value is missing or empty"""
    if isinstance(value, str) and value.startswith('#{defaults.'):
        var_name = value.split('.')[1].rstrip('}')
        return defaults.get(var_name, value)
    if (value is None or value == '') and key is not None and key in defaults:
        return defaults[key]
    return value


def _number(value: Any, name: str, integer: bool = False, minimum: float = 0) -> Any:
    """Check one numeric config value, raising ConfigError when it doesn't fit"""
    kinds = (int,) if integer else (int, float)
    if isinstance(value, str):
        try:
            value = int(value) if integer else float(value)
        except ValueError:
            raise ConfigError(f"{name} must be a number, not '{value}'") from None
    if isinstance(value, bool) or not isinstance(value, kinds):
        raise ConfigError(f"{name} must be {'an integer' if integer else 'a number'}, not {value!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


def _load_timings(values: Any) -> Timings:
    """Build Timings from the 'timings' section; budgets must allow at least one attempt"""
    if not isinstance(values, dict):
        raise ConfigError("'timings' must be a mapping")
    known = {f.name for f in dataclasses.fields(Timings)}
    unknown = sorted(str(k) for k in values if k not in known)
    if unknown:
        raise ConfigError(f"Unknown timing(s): {', '.join(unknown)}")
    checked = {}
    for key, value in values.items():
        if key.endswith('_attempts'):
            checked[key] = _number(value, f"timings.{key}", integer=True, minimum=1)
        elif key == 'ping_retries':
            checked[key] = _number(value, f"timings.{key}", integer=True)
        else:
            checked[key] = _number(value, f"timings.{key}")
    return dataclasses.replace(Timings(), **checked)


def load_settings(path: str, explicit: bool = False) -> Settings:
    """Load the YAML configuration; a missing default file means built-in defaults"""
    if not os.path.isfile(path):
        if explicit:
            raise ConfigError(f"Configuration file [ {path} ] not found!")
        return Settings()
    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except (IOError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading configuration from {path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"Configuration in {path} must be a mapping")

    sections = {}
    for name in ('defaults', 'node_probe', 'snmp'):
        sections[name] = config.get(name) or {}
        if not isinstance(sections[name], dict):
            raise ConfigError(f"'{name}' in {path} must be a mapping")
    defaults, probe, snmp = sections['defaults'], sections['node_probe'], sections['snmp']
    settings = Settings(
        probe_method=probe.get('method', 'ipmi'),
        username=str(_process_template_var(probe.get('username', ''), defaults, 'username') or DEFAULT_USERNAME),
        password=str(_process_template_var(probe.get('password', ''), defaults, 'password') or DEFAULT_PASSWORD),
        ssh_port=_number(probe.get('ssh_port', 22), 'node_probe.ssh_port', integer=True, minimum=1),
        power_command=probe.get('power_command', 'power status'),
        snmp_community=_process_template_var(snmp.get('community'), defaults, 'community'),
        snmp_port=_number(snmp.get('port', SNMP_PORT), 'snmp.port', integer=True, minimum=1),
        snmp_timeout=_number(snmp.get('timeout', SNMP_TIMEOUT), 'snmp.timeout'),
        snmp_retries=_number(snmp.get('retries', SNMP_RETRIES), 'snmp.retries', integer=True),
    )
    if settings.probe_method not in ('ipmi', 'ssh'):
        raise ConfigError(f"node_probe.method must be 'ipmi' or 'ssh', not '{settings.probe_method}'")

    settings.timings = _load_timings(config.get('timings') or {})

    pdu = config.get('pdu')
    if pdu:
        if not isinstance(pdu, dict):
            raise ConfigError(f"'pdu' in {path} must be a mapping with 'ip', 'dialect' and optional 'ports'")
        if not pdu.get('ip'):
            raise ConfigError(f"pdu.ip is missing in {path}")
        ports = pdu.get('ports') or []
        if not isinstance(ports, list):
            raise ConfigError(f"pdu.ports in {path} must be a list")
        settings.pdu = PduTarget(
            address=str(pdu['ip']),
            dialect=Dialect.parse(pdu.get('dialect', 0)),
            ports=parse_ports(ports),
            uses_all_ports=not ports,
        )
    nodes = config.get('nodes')
    if nodes:
        if not isinstance(nodes, list):
            raise ConfigError(f"'nodes' in {path} must be a list of BMC addresses")
        settings.nodes = [Node(address=str(a), line_number=n) for n, a in enumerate(nodes, start=1)]

    logger.debug(f"Loaded configuration from {path}")
    return settings


# ----------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------

class ACCycleController:
    """Drives the PDU and watches the nodes through repeated A/C cycles"""

    def __init__(self, pdu: PduTarget, nodes: List[Node], driver: PduDriver, prober: NodeProber,
                 ledger: CycleLedger, timings: Optional[Timings] = None,
                 sleep: Callable[[float], None] = time.sleep, source: str = 'BMC IP LIST FILE'):
        if not nodes:
            raise ConfigError('No nodes to test')
        self.pdu = pdu
        self.nodes = list(nodes)
        self.driver = driver
        self.prober = prober
        self.ledger = ledger
        self.timings = timings or Timings()
        self.sleep = sleep
        self.source = source
        self.total_nodes = len(self.nodes)
        self.total_ports = len(self.pdu.ports)
        self.state = CycleState.WAIT_ALL_OFF
        self.cycle = 0
        self.completed = 0
        self.failed_step: Optional[CycleState] = None

    def __repr__(self) -> str:
        return f"ACCycleController(pdu={self.pdu.address}, nodes={self.total_nodes}, ports={self.total_ports})"

    def close(self) -> None:
        self.driver.close()

    # Reachability --------------------------------------------------------

    def ping_with_retries(self, address: str, retries: int) -> int:
        """Ping until answered, retrying up to `retries` times; returns the last exit code"""
        last = {'rc': PING_NO_REPLY}

        def check() -> Tuple[int, int]:
            last['rc'] = self.prober.probe(address)
            return (1 if last['rc'] == PING_OK else 0), 1

        try:
            poll_until(check, max_attempts=retries + 1, delay=self.timings.ping_interval,
                       label=f"ping {address}", sleep=self.sleep)
        except ThresholdExceeded:
            pass
        return last['rc']

    def preflight(self) -> None:
        """Check the PDU and every BMC answer before the first cycle"""
        rc = self.prober.probe(self.pdu.address)
        if rc != PING_OK:
            raise UnreachablePdu(self.pdu.address, rc)

        failures: List[Tuple[Node, str]] = []
        for node in self.nodes:
            rc = self.ping_with_retries(node.address, self.timings.ping_retries)
            if rc == PING_OK:
                continue
            reason = 'unreachable' if rc == PING_NO_REPLY else 'invalid'
            logger.error(f"FILE: {self.source}, LINE: {node.line_number}, BMC IP: [ {node.address} ] is {reason}")
            failures.append((node, reason))
        if failures:
            raise NodeUnreachable(self.source, failures)
        logger.info(f"Pre-flight OK: PDU {self.pdu.address}, {self.total_nodes} node(s), {self.total_ports} port(s)")

    # Nodes ---------------------------------------------------------------

    def count_nodes_off(self) -> Tuple[int, int]:
        nodes_off = 0
        for node in self.nodes:
            if self.ping_with_retries(node.address, self.timings.ping_retries) != PING_OK:
                continue
            if self.prober.power_state(node.address, check_reachable=False) is NodePowerState.OFF:
                nodes_off += 1
        return nodes_off, self.total_nodes

    def wait_all_off(self) -> PollResult:
        self.state = CycleState.WAIT_ALL_OFF
        print('Waiting for all nodes to power off ... ', end='', flush=True)
        try:
            result = poll_until(
                self.count_nodes_off,
                max_attempts=self.timings.node_off_attempts,
                delay=self.timings.node_off_interval,
                warmup=self.timings.node_off_interval,
                label='nodes off',
                sleep=self.sleep,
            )
        except ThresholdExceeded:
            print(colorize('FAIL', LRED))
            print('Please check system, one or more nodes might be stuck.\n')
            raise
        print(colorize('OK', LGREEN) + '\n')
        return result

    def verify_nodes_on(self) -> None:
        """Wait for each BMC in turn, then check its node reports power on"""
        print('Checking if all nodes powered on ... ', end='', flush=True)
        failed: List[str] = []
        for node in self.nodes:
            self.state = CycleState.WAIT_REACHABLE
            try:
                poll_until(
                    lambda address=node.address: (1 if self.prober.is_reachable(address) else 0, 1),
                    max_attempts=self.timings.reachable_attempts,
                    delay=self.timings.reachable_interval,
                    label=f"BMC {node.address} reachable",
                    sleep=self.sleep,
                )
            except ThresholdExceeded:
                print(colorize(
                    f"NODE [ {node.address} ] BMC IP NOT REACHABLE FOR {self.timings.reachable_attempts} ATTEMPTS, "
                    'CHECK BMC STATUS OR NETWORK FOR PROBLEMS!', LRED) + '\n')
                raise
            self.sleep(self.timings.verify_delay)

            self.state = CycleState.VERIFY_ON
            if self.prober.power_state(node.address) is not NodePowerState.ON:
                print(colorize('FAIL', LRED) + f"\nNode [ {node.address} ] did not power on.\n")
                failed.append(node.address)
        if failed:
            raise PowerOnFailed(failed)
        print(colorize('OK', LGREEN) + '\n')

    # Ports ---------------------------------------------------------------

    def set_all_ports(self, state: PortState) -> None:
        """Send the command to every managed port; failures are left to the confirmation poll"""
        for port in self.pdu.ports:
            try:
                self.driver.set_port(port, state)
            except CommandError as e:
                logger.warning(f"Setting port {port} {state.value} on PDU {self.pdu.address} failed: {e}")

    def count_ports(self, state: PortState) -> Tuple[int, int]:
        matching = 0
        for port in self.pdu.ports:
            try:
                if self.driver.get_port(port) is state:
                    matching += 1
            except CommandError as e:
                logger.warning(f"Reading port {port} on PDU {self.pdu.address} failed: {e}")
        return matching, self.total_ports

    def switch_ports(self, state: PortState) -> PollResult:
        """Switch every managed port and poll until all of them report the new state"""
        if state is PortState.OFF:
            settle, delay, attempts = self.timings.off_settle, self.timings.off_retry_delay, self.timings.off_attempts
            self.state = CycleState.POWER_OFF_PORTS
        else:
            settle, delay, attempts = self.timings.on_settle, self.timings.on_retry_delay, self.timings.on_attempts
            self.state = CycleState.POWER_ON_PORTS
        which = 'all' if self.pdu.uses_all_ports else 'specified'
        print(f"Setting {which} ports on [ {self.pdu.address} ] {state.value} ...", end='', flush=True)
        self.set_all_ports(state)

        def retrying(attempt: int, satisfied: int, required: int) -> None:
            print(' ' + colorize('FAILED', LRED))
            print('Re-trying ...', end='', flush=True)

        self.state = CycleState.CONFIRM_OFF if state is PortState.OFF else CycleState.CONFIRM_ON
        try:
            result = poll_until(
                lambda: self.count_ports(state),
                max_attempts=attempts,
                delay=delay,
                warmup=settle,
                action=lambda: self.set_all_ports(state),
                label=f"ports {state.value}",
                sleep=self.sleep,
                on_retry=retrying,
            )
        except ThresholdExceeded as e:
            print(' ' + colorize('FAILED', LRED) + '\n')
            print(colorize(
                f"PDU ports failed to power {state.value} after {e.attempts} attempts, STOPPING ...", LRED) + '\n')
            raise
        print(' ' + colorize('OK', LGREEN) + '\n')
        return result

    # Cycle ---------------------------------------------------------------

    def run_cycle(self, cycle_number: int) -> str:
        """Run one complete off/on cycle and record it in the ledger"""
        self.cycle = cycle_number
        print('=' * 64)
        print(f"{datetime.datetime.now().strftime('%Y/%m/%d %H:%M:%S')} - CYCLE: {cycle_number}")
        try:
            self.wait_all_off()
            self.switch_ports(PortState.OFF)

            self.state = CycleState.COOLDOWN
            self.sleep(self.timings.cooldown)

            self.switch_ports(PortState.ON)

            self.state = CycleState.WARMUP
            print(f"Waiting {self.timings.warmup:g} seconds for BMCs to initialize ... ", end='', flush=True)
            self.sleep(self.timings.warmup)
            print('Done\n')

            self.verify_nodes_on()
        except (ACCycleError, ThresholdExceeded):
            self.failed_step = self.state
            self.state = CycleState.FAIL
            raise

        line = self.ledger.append(cycle_number)
        self.completed += 1
        logger.info(f"Cycle {cycle_number} complete ({line})")
        self.state = CycleState.WAIT_ALL_OFF
        return line

    def run(self, max_cycles: Optional[int] = None) -> int:
        """Cycle until a failure, or until max_cycles cycles completed; returns the last cycle number"""
        cycle = self.ledger.last_cycle()
        logger.info(f"Starting at cycle {cycle + 1} (ledger {self.ledger.path})")
        while max_cycles is None or self.completed < max_cycles:
            cycle += 1
            self.run_cycle(cycle)
        return cycle


# ----------------------------------------------------------------------
# Command line
# ----------------------------------------------------------------------

FILE_FORMATS = """\
FILE FORMATS:
<PDU_IP_AND_PORTS_FILE>   [REQUIRED] PDU IP on line 1
                          [OPTIONAL] PDU port number(s), each port number on its own line,
                                     starting from line 2. Valid Ports: 1 to 8.
                                     If unspecified, all ports will be used
<BMC_IP_LIST_FILE>        [REQUIRED] BMC IP of all nodes in system, each BMC IP on its own line

Both files may be omitted when the configuration file has 'pdu' and 'nodes' sections.
"""


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description=f"A/C on/off test for a whole multi-node system through a PDU (version {VERSION})",
        epilog=FILE_FORMATS,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('pdu_file', nargs='?', help='File containing the PDU IP and, optionally, the ports to use')
    parser.add_argument('bmc_file', nargs='?', help='File containing the BMC IP of each node in the system')
    parser.add_argument('dialect', nargs='?', help='0 (ServerTech/APC) | 1 (TrippLite)')
    parser.add_argument('--config', default=None, help=f"Configuration file path (default: {CONFIG_FILE} if present)")
    parser.add_argument('--ledger', help='Cycle log file (default: <BMC_IP_LIST_FILE>.log)')
    parser.add_argument('--cycles', type=int, help='Stop after this many successful cycles (default: run forever)')
    parser.add_argument('--skip-preflight', action='store_true', help='Skip the PDU/BMC reachability checks')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--version', action='version', version=f"%(prog)s {VERSION}")
    args = parser.parse_args(argv)
    given = [a for a in (args.pdu_file, args.bmc_file, args.dialect) if a is not None]
    if given and len(given) != 3:
        parser.error('PDU_IP_AND_PORTS_FILE, BMC_IP_LIST_FILE and the PDU type must be given together')
    if not given and args.config is None and not os.path.isfile(CONFIG_FILE):
        parser.error("Give PDU_IP_AND_PORTS_FILE, BMC_IP_LIST_FILE and the PDU type, or a --config with 'pdu' and 'nodes'")
    if args.cycles is not None and args.cycles < 1:
        parser.error('--cycles must be at least 1')
    return args


def build_controller(args, settings: Settings) -> ACCycleController:
    """Resolve inputs from the command line and configuration into a controller"""
    if args.pdu_file:
        dialect = Dialect.parse(args.dialect)
        pdu = load_pdu_file(args.pdu_file, dialect)
        nodes = load_node_file(args.bmc_file)
        source = args.bmc_file
        ledger_path = args.ledger or f"{args.bmc_file}.log"
    else:
        if settings.pdu is None or not settings.nodes:
            raise ConfigError("The configuration file needs 'pdu' and 'nodes' sections when no input files are given")
        pdu = settings.pdu
        nodes = settings.nodes
        source = args.config or CONFIG_FILE
        ledger_path = args.ledger or f"{source}.log"

    driver = create_driver(
        pdu.dialect, pdu.address,
        community=settings.snmp_community,
        port=settings.snmp_port,
        timeout=settings.snmp_timeout,
        retries=settings.snmp_retries,
    )
    probe_kwargs: Dict[str, Any] = {'username': settings.username, 'password': settings.password}
    if settings.probe_method == 'ssh':
        probe_kwargs.update(port=settings.ssh_port, power_command=settings.power_command)
    prober = create_prober(settings.probe_method, **probe_kwargs)

    return ACCycleController(
        pdu=pdu,
        nodes=nodes,
        driver=driver,
        prober=prober,
        ledger=CycleLedger(ledger_path),
        timings=settings.timings,
        source=source,
    )


def format_unreachable_table(error: NodeUnreachable) -> str:
    """Format the nodes that failed pre-flight as a pretty table"""
    table = PrettyTable()
    table.field_names = ["File", "Line", "BMC IP", "Problem"]
    for node, reason in error.failures:
        table.add_row([error.source, node.line_number, node.address, reason])
    return table.get_string()


def format_summary(controller: Optional[ACCycleController], success: bool, message: str = '') -> str:
    """Format a summary of the run"""
    table = PrettyTable()
    table.field_names = ["PDU", "Ports", "Nodes", "Cycles Completed", "Last Cycle", "Result", "Details"]
    if controller is None:
        table.add_row(["", "", "", 0, "", "SUCCESS" if success else "FAILED", message])
    else:
        ports = 'all' if controller.pdu.uses_all_ports else ', '.join(str(p) for p in controller.pdu.ports)
        details = message
        if controller.failed_step is not None:
            details = f"{message}\nStopped while {controller.failed_step.value}"
        table.add_row([
            f"{controller.pdu.address} ({controller.pdu.dialect.label})",
            ports,
            controller.total_nodes,
            controller.completed,
            controller.cycle,
            "SUCCESS" if success else "FAILED",
            details,
        ])
    return table.get_string()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    controller = None
    success = False
    message = ''
    exit_code = 1
    try:
        settings = load_settings(args.config or CONFIG_FILE, explicit=args.config is not None)
        controller = build_controller(args, settings)
        if not args.skip_preflight:
            controller.preflight()
        controller.run(max_cycles=args.cycles)
        success = True
        exit_code = 0
        message = f"Completed {controller.completed} cycle(s)."
    except NodeUnreachable as e:
        logger.error(str(e))
        print(format_unreachable_table(e))
        message = str(e)
    except (ACCycleError, InvalidDialect, ThresholdExceeded, LedgerError) as e:
        logger.error(str(e))
        message = str(e)
    except KeyboardInterrupt:
        print()
        logger.warning('Interrupted')
        message = 'Interrupted'
        exit_code = 130
    finally:
        if controller is not None:
            controller.close()
    print("\n----- RUN SUMMARY -----")
    print(format_summary(controller, success, message))
    print("-----------------------\n")
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
