"""
This module models the iptables rules that make up an isolation pair. Rules are
built from a container address and a comment tag, or parsed back from the
`iptables -S <chain>` listing so that the toggle never has to grep raw text.
"""

import ipaddress
import shlex
from dataclasses import dataclass, field
from enum import Enum

RETURN_STATES = frozenset({"ESTABLISHED", "RELATED"})

_OPTION_FIELDS = {
    "-s": "source",
    "--source": "source",
    "--ctstate": "ctstate",
    "--comment": "comment",
    "-j": "target",
    "--jump": "target",
}


class RuleKind(Enum):
    ALLOW_RETURN = "allow-return"
    DENY = "deny"
    OTHER = "other"


@dataclass(frozen=True)
class FirewallRule:
    chain: str
    args: tuple[str, ...]
    source: str | None = None
    ctstate: frozenset[str] = frozenset()
    comment: str | None = None
    target: str | None = None
    line: str = field(default="", compare=False)

    @property
    def text(self) -> str:
        return self.line or shlex.join(["-A", self.chain, *self.args])

    @property
    def source_address(self) -> str | None:
        """The source as a bare address, so `172.17.0.5/32` matches `172.17.0.5`."""
        if self.source is None:
            return None
        try:
            interface = ipaddress.ip_interface(self.source)
        except ValueError:
            return self.source
        if interface.network.prefixlen == interface.max_prefixlen:
            return str(interface.ip)
        return str(interface.network)

    @property
    def kind(self) -> RuleKind:
        if self.target == "RETURN" and self.ctstate == RETURN_STATES:
            return RuleKind.ALLOW_RETURN
        if self.target == "DROP" and not self.ctstate:
            return RuleKind.DENY
        return RuleKind.OTHER

    def has_tag(self, tag: str) -> bool:
        return self.comment == tag

    def matches(self, other: "FirewallRule") -> bool:
        return (
            self.chain == other.chain
            and self.source_address == other.source_address
            and self.ctstate == other.ctstate
            and self.comment == other.comment
            and self.target == other.target
        )


def allow_return_rule(chain: str, address: str, tag: str) -> FirewallRule:
    args = (
        "-s",
        address,
        "-m",
        "conntrack",
        "--ctstate",
        "ESTABLISHED,RELATED",
        "-m",
        "comment",
        "--comment",
        tag,
        "-j",
        "RETURN",
    )
    return FirewallRule(
        chain=chain, args=args, source=address, ctstate=RETURN_STATES, comment=tag, target="RETURN"
    )


def deny_rule(chain: str, address: str, tag: str) -> FirewallRule:
    args = ("-s", address, "-m", "comment", "--comment", tag, "-j", "DROP")
    return FirewallRule(chain=chain, args=args, source=address, comment=tag, target="DROP")


def isolation_pair(chain: str, address: str, tag: str) -> tuple[FirewallRule, FirewallRule]:
    """Return the (allow-return, deny) rules in chain evaluation order."""
    return allow_return_rule(chain, address, tag), deny_rule(chain, address, tag)


def parse_rule(line: str) -> FirewallRule | None:
    """
    Parses one line of `iptables -S` output. Policy (`-P`) and chain
    declaration (`-N`) lines are not rules and yield None.
    """
    tokens = shlex.split(line)
    if len(tokens) < 2 or tokens[0] != "-A":
        return None

    chain, args = tokens[1], tuple(tokens[2:])
    values: dict[str, str] = {}
    negated = False
    index = 0
    while index < len(args):
        token = args[index]
        if token == "!":
            negated = True
            index += 1
            continue
        field_name = _OPTION_FIELDS.get(token)
        if field_name is not None and index + 1 < len(args):
            if negated:
                values[field_name] = "!" + args[index + 1]
            else:
                values.setdefault(field_name, args[index + 1])
            index += 2
        else:
            index += 1
        negated = False

    ctstate = values.get("ctstate")
    return FirewallRule(
        chain=chain,
        args=args,
        source=values.get("source"),
        ctstate=frozenset(ctstate.split(",")) if ctstate else frozenset(),
        comment=values.get("comment"),
        target=values.get("target"),
        line=line.strip(),
    )


def parse_rules(output: str) -> list[FirewallRule]:
    rules = []
    for line in output.splitlines():
        if not line.strip():
            continue
        rule = parse_rule(line)
        if rule is not None:
            rules.append(rule)
    return rules
