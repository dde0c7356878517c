"""
This module provides the `IsolationToggle` class, which blocks new outbound
connections from the ComfyUI container while keeping its browser UI reachable.

Two rules tagged with a fixed comment are inserted at the top of the chain:

1. RETURN for packets from the container in ESTABLISHED/RELATED state, so
   responses to the operator's browser requests still flow.
2. DROP for everything else from the container, so new outbound connections
   are blocked.

The rules are found again by their tag alone, whatever address they name, so
a container that restarted with a new address is cleaned up correctly.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from comfyui_firewall.config import FirewallConfig
from comfyui_firewall.docker_manager import DockerManager, ProbeOutcome
from comfyui_firewall.exceptions import (
    ContainerRuntimeError,
    FirewallCommandError,
    InsufficientPrivilege,
    PartialRuleState,
    VerificationInconclusive,
    WorkloadNotRunning,
)
from comfyui_firewall.firewall_manager import RuleChain, has_root_privilege
from comfyui_firewall.rules import FirewallRule, RuleKind, isolation_pair


class IsolationState(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    UNKNOWN = "unknown"


@dataclass
class EnableResult:
    address: str
    installed: list[FirewallRule]
    removed: list[FirewallRule] = field(default_factory=list)
    failed: list[FirewallRule] = field(default_factory=list)
    partial_addresses: list[str] = field(default_factory=list)
    probe: ProbeOutcome | None = None
    probe_error: str | None = None

    @property
    def replaced(self) -> bool:
        return bool(self.removed or self.failed)


@dataclass
class DisableResult:
    removed: list[FirewallRule] = field(default_factory=list)
    failed: list[FirewallRule] = field(default_factory=list)
    partial_addresses: list[str] = field(default_factory=list)

    @property
    def nothing_to_remove(self) -> bool:
        return not self.removed and not self.failed


@dataclass
class StatusReport:
    container_name: str
    running: bool
    address: str | None = None
    state: IsolationState = IsolationState.UNKNOWN
    rules: list[FirewallRule] = field(default_factory=list)
    container_error: str | None = None
    firewall_error: str | None = None


class IsolationToggle:
    def __init__(
        self,
        config: FirewallConfig,
        docker_manager: DockerManager,
        chain: RuleChain,
        privilege_check=has_root_privilege,
    ):
        self.config = config
        self.docker_manager = docker_manager
        self.chain = chain
        self.privilege_check = privilege_check
        self.logger = logging.getLogger(__name__)

    def enable(self, verify: bool = True) -> EnableResult:
        """
        Installs a fresh isolation pair for the container's current address.

        Any rule already carrying the tag is removed first, whichever address it
        names. Running this twice is safe and leaves exactly one pair behind.
        """
        self._require_privilege()

        address = self.docker_manager.get_container_ip()
        cleanup = DisableResult()

        existing = self.tagged_rules()
        if existing:
            self.logger.warning("Replacing existing rules (container may have a new address)")
            cleanup = self._remove_rules(existing)

        allow_return, deny = isolation_pair(self.config.chain, address, self.config.tag)
        self.chain.insert_rule(allow_return, position=1)
        self.chain.insert_rule(deny, position=2)
        self.logger.info(f"Isolation enabled for '{self.config.container_name}' ({address})")

        result = EnableResult(
            address=address,
            installed=[allow_return, deny],
            removed=cleanup.removed,
            failed=cleanup.failed,
            partial_addresses=cleanup.partial_addresses,
        )
        if result.failed:
            self.logger.error(f"{len(result.failed)} stale rule(s) could not be removed")
        if verify:
            try:
                result.probe = self.verify()
            except VerificationInconclusive as e:
                self.logger.warning(f"Could not verify isolation: {e}")
                result.probe = ProbeOutcome.INCONCLUSIVE
                result.probe_error = str(e)
            else:
                if result.probe == ProbeOutcome.REACHABLE:
                    self.logger.warning(f"Container '{self.config.container_name}' can still reach the internet")
        return result

    def disable(self) -> DisableResult:
        """Removes every rule carrying the tag, for every address."""
        self._require_privilege()

        existing = self.tagged_rules()
        if not existing:
            self.logger.info("No firewall rules found, nothing to remove")
            return DisableResult()

        result = self._remove_rules(existing)
        self.logger.info(f"Isolation disabled for '{self.config.container_name}'")
        return result

    def status(self) -> StatusReport:
        """
        Reports container and firewall state without changing either. Reading
        the chain needs root; without it the firewall state is UNKNOWN.
        """
        report = StatusReport(container_name=self.config.container_name, running=False)

        try:
            report.address = self.docker_manager.get_container_ip()
            report.running = True
        except WorkloadNotRunning as e:
            report.container_error = str(e)
            try:
                report.running = self.docker_manager.is_running()
            except ContainerRuntimeError as runtime_error:
                self.logger.debug(f"Cannot re-check container state: {runtime_error}")
        except ContainerRuntimeError as e:
            report.container_error = str(e)

        try:
            report.rules = self.tagged_rules()
        except (InsufficientPrivilege, FirewallCommandError) as e:
            self.logger.debug(f"Cannot read chain {self.config.chain}: {e}")
            report.state = IsolationState.UNKNOWN
            report.firewall_error = str(e)
            return report

        report.state = IsolationState.ACTIVE if report.rules else IsolationState.INACTIVE
        return report

    def verify(self) -> ProbeOutcome:
        """
        Runs the connectivity probe inside the container, retrying while the
        result is inconclusive (the container may still be starting).
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.config.probe_attempts),
            wait=wait_fixed(self.config.probe_retry_interval),
            retry=retry_if_exception_type(VerificationInconclusive),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                try:
                    return self.docker_manager.run_probe(self.config.probe_url, timeout=self.config.probe_timeout)
                except (WorkloadNotRunning, ContainerRuntimeError) as e:
                    raise VerificationInconclusive(str(e)) from e
        raise VerificationInconclusive("Probe did not run")

    def tagged_rules(self) -> list[FirewallRule]:
        return [rule for rule in self.chain.list_rules() if rule.has_tag(self.config.tag)]

    def _remove_rules(self, rules: list[FirewallRule]) -> DisableResult:
        result = DisableResult()

        by_address: dict[str | None, list[FirewallRule]] = defaultdict(list)
        for rule in rules:
            by_address[rule.source_address].append(rule)

        for address, address_rules in by_address.items():
            try:
                self._check_pair(address, address_rules)
            except PartialRuleState as e:
                self.logger.warning(str(e))
                result.partial_addresses.append(str(address))

            for rule in address_rules:
                try:
                    self.chain.delete_rule(rule)
                except FirewallCommandError as e:
                    self.logger.warning(f"Could not remove rule '{rule.text}': {e}")
                    result.failed.append(rule)
                else:
                    result.removed.append(rule)
            self.logger.info(f"Removed rules for {address}")

        return result

    def _check_pair(self, address: str | None, rules: list[FirewallRule]):
        kinds = {rule.kind for rule in rules}
        has_allow = RuleKind.ALLOW_RETURN in kinds
        has_deny = RuleKind.DENY in kinds
        if has_allow and not has_deny:
            raise PartialRuleState(str(address), RuleKind.ALLOW_RETURN.value)
        if has_deny and not has_allow:
            raise PartialRuleState(str(address), RuleKind.DENY.value)

    def _require_privilege(self):
        if not self.privilege_check():
            raise InsufficientPrivilege()
