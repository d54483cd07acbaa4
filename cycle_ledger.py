#!/usr/bin/env python3
"""
Cycle Ledger

Append-only text file with one line per completed power cycle:

    2026-10-17 - 14:05 #42

Only the last line is ever read back, to resume cycle numbering after a restart.
"""

import datetime
import logging
import os
from typing import Optional

logger = logging.getLogger('cycle_ledger')

TIMESTAMP_FORMAT = '%Y-%m-%d - %H:%M'


class LedgerError(Exception):
    """Raised when the ledger's last line has no readable cycle number"""


class CycleLedger:
    """Class representing the cycle counter file"""

    def __init__(self, path: str):
        self.path = path

    def __repr__(self) -> str:
        return f"CycleLedger(path={self.path})"

    def last_cycle(self) -> int:
        """Return the last recorded cycle number, 0 if nothing was recorded yet"""
        if not os.path.isfile(self.path):
            return 0
        last_line = ''
        with open(self.path, 'r') as f:
            for line in f:
                if line.strip():
                    last_line = line.strip()
        if not last_line:
            return 0
        _, sep, number = last_line.rpartition('#')
        if not sep:
            raise LedgerError(f"No cycle number in last line of {self.path}: {last_line!r}")
        try:
            return int(number.strip())
        except ValueError:
            raise LedgerError(f"Bad cycle number in last line of {self.path}: {last_line!r}") from None

    def append(self, cycle_number: int, when: Optional[datetime.datetime] = None) -> str:
        """Record a completed cycle and return the line written"""
        when = when or datetime.datetime.now()
        line = f"{when.strftime(TIMESTAMP_FORMAT)} #{cycle_number}"
        with open(self.path, 'a') as f:
            f.write(line + '\n')
            f.flush()
        logger.debug(f"Recorded '{line}' in {self.path}")
        return line
