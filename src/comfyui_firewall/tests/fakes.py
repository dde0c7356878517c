"""In-memory stand-ins for iptables and docker used by the toggle tests."""

from comfyui_firewall.docker_manager import ProbeOutcome
from comfyui_firewall.exceptions import FirewallCommandError, InsufficientPrivilege, WorkloadNotRunning
from comfyui_firewall.rules import FirewallRule


class InMemoryChain:
    def __init__(self, rules: list[FirewallRule] | None = None):
        self.rules: list[FirewallRule] = list(rules or [])
        self.readable = True
        self.fail_deletes: set[str] = set()

    def list_rules(self) -> list[FirewallRule]:
        if not self.readable:
            raise InsufficientPrivilege("Permission denied (you must be root)")
        return list(self.rules)

    def insert_rule(self, rule: FirewallRule, position: int = 1) -> None:
        self.rules.insert(position - 1, rule)

    def delete_rule(self, rule: FirewallRule) -> None:
        if rule.source_address in self.fail_deletes:
            raise FirewallCommandError(["iptables", "-D", rule.chain, *rule.args], 1, "Bad rule")
        for index, existing in enumerate(self.rules):
            if existing.matches(rule):
                del self.rules[index]
                return
        raise FirewallCommandError(["iptables", "-D", rule.chain, *rule.args], 1, "Bad rule")

    def rules_for(self, address: str) -> list[FirewallRule]:
        return [rule for rule in self.rules if rule.source_address == address]


class FakeDockerManager:
    def __init__(self, container_name: str = "app-x", address: str | None = "172.17.0.5"):
        self.container_name = container_name
        self.address = address
        self.running = address is not None
        self.probe_results: list = [ProbeOutcome.BLOCKED]
        self.probe_calls = 0

    def is_running(self) -> bool:
        return self.running

    def get_container_ip(self) -> str:
        if not self.running:
            raise WorkloadNotRunning(self.container_name)
        if not self.address:
            raise WorkloadNotRunning(self.container_name, "has no network address")
        return self.address

    def run_probe(self, url: str, timeout: int = 3) -> ProbeOutcome:
        self.probe_calls += 1
        result = self.probe_results[min(self.probe_calls, len(self.probe_results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result
