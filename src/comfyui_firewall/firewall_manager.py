"""
This module provides the `FirewallManager` class, which manages rules in a single
iptables chain (by default `DOCKER-USER`, evaluated before Docker's own rules for
all forwarded container traffic). It lists, inserts and deletes rules by running
the `iptables` binary and turns its exit status into typed errors.
"""

import logging
import os
import subprocess
from typing import Protocol

from comfyui_firewall.exceptions import FirewallCommandError, InsufficientPrivilege
from comfyui_firewall.rules import FirewallRule, parse_rules

PRIVILEGE_MARKERS = ("permission denied", "must be root", "operation not permitted")


class RuleChain(Protocol):
    def list_rules(self) -> list[FirewallRule]: ...

    def insert_rule(self, rule: FirewallRule, position: int = 1) -> None: ...

    def delete_rule(self, rule: FirewallRule) -> None: ...


def has_root_privilege() -> bool:
    return os.geteuid() == 0


class FirewallManager:
    def __init__(self, chain: str = "DOCKER-USER", iptables_binary: str = "iptables"):
        self.chain = chain
        self.iptables_binary = iptables_binary
        self.logger = logging.getLogger(__name__)

    def list_rules(self) -> list[FirewallRule]:
        result = self._run("-S", self.chain)
        rules = parse_rules(result.stdout)
        self.logger.debug(f"Read {len(rules)} rule(s) from chain {self.chain}")
        return rules

    def insert_rule(self, rule: FirewallRule, position: int = 1):
        self.logger.info(f"Inserting rule at position {position} in {self.chain}: {rule.text}")
        self._run("-I", self.chain, str(position), *rule.args)

    def delete_rule(self, rule: FirewallRule):
        self.logger.info(f"Deleting rule from {self.chain}: {rule.text}")
        self._run("-D", self.chain, *rule.args)

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        command = [self.iptables_binary, *args]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise FirewallCommandError(command, None, f"{self.iptables_binary} not found") from e
        except PermissionError as e:
            raise InsufficientPrivilege(f"Cannot execute {self.iptables_binary}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr or ""
            if any(marker in stderr.lower() for marker in PRIVILEGE_MARKERS):
                raise InsufficientPrivilege(f"Cannot access iptables chain {self.chain}: {stderr.strip()}")
            raise FirewallCommandError(command, result.returncode, stderr)
        return result
