#!/usr/bin/env python3
"""
Convert a PDU IP/ports file and a BMC IP list file to config.yaml for the AC cycle controller
"""

import argparse
import sys
from typing import Any, Dict, List, Optional

import yaml

from ac_cycle_controller import ACCycleError, Node, PduTarget, load_node_file, load_pdu_file
from node_prober import DEFAULT_PASSWORD, DEFAULT_USERNAME
from pdu_driver import Dialect, InvalidDialect

# Default output path
YAML_PATH = "config.yaml"


def create_config(pdu: PduTarget, nodes: List[Node],
                  defaults: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create the configuration dictionary from the parsed input files"""
    config = {
        "defaults": {
            "username": DEFAULT_USERNAME,
            "password": DEFAULT_PASSWORD,
        },
        "node_probe": {
            "method": "ipmi",
            "username": "#{defaults.username}",
            "password": "#{defaults.password}",
        },
        "pdu": {
            "ip": pdu.address,
            "dialect": int(pdu.dialect),
        },
        "nodes": [node.address for node in nodes],
    }
    if defaults:
        config["defaults"].update(defaults)
    if not pdu.uses_all_ports:
        config["pdu"]["ports"] = list(pdu.ports)
    return config


def write_config(config: Dict[str, Any], path: str = YAML_PATH) -> None:
    with open(path, 'w', encoding='utf-8') as yaml_file:
        yaml.safe_dump(config, yaml_file, default_flow_style=False, sort_keys=False)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to convert the list files to YAML"""
    parser = argparse.ArgumentParser(description='Convert PDU and BMC list files to config.yaml')
    parser.add_argument('pdu_file', help='File with the PDU IP on line 1 and optional ports after it')
    parser.add_argument('bmc_file', help='File with one BMC IP per line')
    parser.add_argument('dialect', help='0 (ServerTech/APC) | 1 (TrippLite)')
    parser.add_argument('--output', '-o', default=YAML_PATH, help='Where to write the YAML configuration')
    args = parser.parse_args(argv)

    try:
        pdu = load_pdu_file(args.pdu_file, Dialect.parse(args.dialect))
        nodes = load_node_file(args.bmc_file)
        write_config(create_config(pdu, nodes), args.output)
    except (ACCycleError, InvalidDialect, OSError, yaml.YAMLError) as e:
        print(f"Error creating config: {e}")
        return 1
    print(f"Configuration written to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
