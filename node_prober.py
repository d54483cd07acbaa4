#!/usr/bin/env python3
"""
Node Prober

Answers two questions about a node's BMC: does it answer a ping, and does it
report the chassis as powered on or off. Power status is read with ipmitool
by default, or over SSH for BMCs that only expose a shell.
"""

import logging
import re
import socket
import subprocess
import time
from enum import Enum
from typing import List, Optional

import paramiko
from paramiko.ssh_exception import AuthenticationException, SSHException

logger = logging.getLogger('node_prober')

# Constants
PING_TIMEOUT = 1
IPMI_TIMEOUT = 30
MAX_RETRIES = 3
RETRY_DELAY = 2
CONNECTION_TIMEOUT = 10
COMMAND_TIMEOUT = 10
DEFAULT_USERNAME = 'ADMIN'
DEFAULT_PASSWORD = 'ADMIN'

# ping exit codes
PING_OK = 0
PING_NO_REPLY = 1


class NodePowerState(Enum):
    """Chassis power state as reported by a node's BMC"""
    OFF = 'off'
    ON = 'on'
    UNKNOWN = 'unknown'


def ping(address: str, timeout: int = PING_TIMEOUT) -> int:
    """Send a single ICMP echo and return ping's exit code"""
    try:
        result = subprocess.run(
            ['ping', '-W', str(timeout), '-c', '1', address],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout + 5,
        )
    except subprocess.TimeoutExpired:
        return PING_NO_REPLY
    return result.returncode


def parse_power_state(output: str) -> NodePowerState:
    """Pull on/off out of a BMC's power status text"""
    match = re.search(r'\b(on|off)\b', output, re.IGNORECASE)
    if not match:
        return NodePowerState.UNKNOWN
    return NodePowerState(match.group(1).lower())


class NodeProber:
    """Base prober: ping for reachability, subclasses query power status"""

    def __init__(self, username: str = DEFAULT_USERNAME, password: str = DEFAULT_PASSWORD):
        self.username = username
        self.password = password

    def probe(self, address: str) -> int:
        return ping(address)

    def is_reachable(self, address: str) -> bool:
        return self.probe(address) == PING_OK

    def power_state(self, address: str, check_reachable: bool = True) -> NodePowerState:
        """Return the node's power state, UNKNOWN if it can't be determined

        check_reachable=False skips the ping when the caller has just confirmed
        the BMC answers.
        """
        if check_reachable and not self.is_reachable(address):
            logger.debug(f"{address} did not answer ping, power state unknown")
            return NodePowerState.UNKNOWN
        output = self.query_power(address)
        if output is None:
            return NodePowerState.UNKNOWN
        state = parse_power_state(output)
        logger.debug(f"{address} power state: {state.value}")
        return state

    def query_power(self, address: str) -> Optional[str]:
        raise NotImplementedError


class IpmiNodeProber(NodeProber):
    """Reads chassis power through `ipmitool power status`"""

    def __init__(self, username: str = DEFAULT_USERNAME, password: str = DEFAULT_PASSWORD,
                 timeout: int = IPMI_TIMEOUT):
        super().__init__(username, password)
        self.timeout = timeout

    def command(self, address: str) -> List[str]:
        return ['ipmitool', '-U', self.username, '-P', self.password, '-H', address, 'power', 'status']

    def query_power(self, address: str) -> Optional[str]:
        try:
            result = subprocess.run(
                self.command(address),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"ipmitool failed for {address}: {e}")
            return None
        if result.returncode != 0:
            logger.debug(f"ipmitool exited {result.returncode} for {address}: {result.stderr.strip()}")
            return None
        return result.stdout


class SshNodeProber(NodeProber):
    """Reads chassis power by running a status command in the BMC's SSH shell"""

    def __init__(self, username: str = DEFAULT_USERNAME, password: str = DEFAULT_PASSWORD,
                 port: int = 22, power_command: str = 'power status'):
        super().__init__(username, password)
        self.port = port
        self.power_command = power_command

    def __repr__(self) -> str:
        return f"SshNodeProber(username={self.username}, port={self.port})"

    def connect(self, address: str) -> Optional[paramiko.SSHClient]:
        """Connect to the BMC via SSH"""
        for retry in range(MAX_RETRIES):
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                logger.debug(f"Connecting to BMC {address} (attempt {retry+1}/{MAX_RETRIES})")
                client.connect(
                    address,
                    port=self.port,
                    username=self.username,
                    password=self.password,
                    timeout=CONNECTION_TIMEOUT,
                    look_for_keys=False,
                    allow_agent=False
                )
                return client
            except (SSHException, AuthenticationException, socket.error) as e:
                client.close()
                logger.debug(f"Failed to connect to BMC {address}: {e}")
                if retry < MAX_RETRIES - 1:
                    time.sleep(RETRY_DELAY)
        logger.warning(f"Max retries exceeded, could not connect to BMC {address}")
        return None

    def query_power(self, address: str) -> Optional[str]:
        client = self.connect(address)
        if client is None:
            return None
        try:
            _, stdout, _ = client.exec_command(self.power_command, timeout=COMMAND_TIMEOUT)
            return stdout.read().decode('utf-8', errors='replace')
        except (SSHException, socket.error) as e:
            logger.debug(f"Power status command failed on {address}: {e}")
            return None
        finally:
            client.close()


def create_prober(method: str = 'ipmi', **kwargs) -> NodeProber:
    """Build a prober for the configured query method"""
    if method == 'ipmi':
        return IpmiNodeProber(**kwargs)
    if method == 'ssh':
        return SshNodeProber(**kwargs)
    raise ValueError(f"Unknown node probe method '{method}' (expected 'ipmi' or 'ssh')")
