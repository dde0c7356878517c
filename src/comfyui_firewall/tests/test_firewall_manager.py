import subprocess
import unittest
from unittest.mock import patch

from comfyui_firewall.exceptions import FirewallCommandError, InsufficientPrivilege
from comfyui_firewall.firewall_manager import FirewallManager
from comfyui_firewall.rules import RuleKind, allow_return_rule, deny_rule

TAG = "comfyui-no-internet"


def completed(args, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr=stderr)


class TestFirewallManager(unittest.TestCase):
    def setUp(self):
        self.firewall = FirewallManager(chain="DOCKER-USER")

    @patch("comfyui_firewall.firewall_manager.subprocess.run")
    def test_list_rules(self, mock_run):
        mock_run.return_value = completed(
            ["iptables"],
            stdout=(
                "-N DOCKER-USER\n"
                f"-A DOCKER-USER -s 172.17.0.5/32 -m comment --comment {TAG} -j DROP\n"
                "-A DOCKER-USER -j RETURN\n"
            ),
        )

        rules = self.firewall.list_rules()

        mock_run.assert_called_once_with(
            ["iptables", "-S", "DOCKER-USER"], capture_output=True, text=True, check=False
        )
        self.assertEqual(len(rules), 2)
        self.assertEqual(rules[0].kind, RuleKind.DENY)
        self.assertEqual(rules[0].source_address, "172.17.0.5")

    @patch("comfyui_firewall.firewall_manager.subprocess.run")
    def test_insert_rule_at_position(self, mock_run):
        mock_run.return_value = completed(["iptables"])

        self.firewall.insert_rule(allow_return_rule("DOCKER-USER", "172.17.0.5", TAG), position=1)
        self.firewall.insert_rule(deny_rule("DOCKER-USER", "172.17.0.5", TAG), position=2)

        first, second = (call.args[0] for call in mock_run.call_args_list)
        self.assertEqual(
            first,
            [
                "iptables",
                "-I",
                "DOCKER-USER",
                "1",
                "-s",
                "172.17.0.5",
                "-m",
                "conntrack",
                "--ctstate",
                "ESTABLISHED,RELATED",
                "-m",
                "comment",
                "--comment",
                TAG,
                "-j",
                "RETURN",
            ],
        )
        self.assertEqual(
            second,
            ["iptables", "-I", "DOCKER-USER", "2", "-s", "172.17.0.5", "-m", "comment", "--comment", TAG, "-j", "DROP"],
        )

    @patch("comfyui_firewall.firewall_manager.subprocess.run")
    def test_delete_rule_uses_listed_arguments(self, mock_run):
        mock_run.side_effect = [
            completed(["iptables"], stdout=f"-A DOCKER-USER -s 172.17.0.5/32 -m comment --comment {TAG} -j DROP\n"),
            completed(["iptables"]),
        ]

        (rule,) = self.firewall.list_rules()
        self.firewall.delete_rule(rule)

        self.assertEqual(
            mock_run.call_args.args[0],
            ["iptables", "-D", "DOCKER-USER", "-s", "172.17.0.5/32", "-m", "comment", "--comment", TAG, "-j", "DROP"],
        )

    @patch("comfyui_firewall.firewall_manager.subprocess.run")
    def test_permission_denied(self, mock_run):
        mock_run.return_value = completed(
            ["iptables"],
            returncode=4,
            stderr="iptables v1.8.7 (nf_tables): Could not fetch rule set generation id: Permission denied (you must be root)\n",
        )

        with self.assertRaises(InsufficientPrivilege):
            self.firewall.list_rules()

    @patch("comfyui_firewall.firewall_manager.subprocess.run")
    def test_command_failure(self, mock_run):
        mock_run.return_value = completed(
            ["iptables"], returncode=1, stderr="iptables: Bad rule (does a matching rule exist in that chain?).\n"
        )

        with self.assertRaises(FirewallCommandError) as ctx:
            self.firewall.delete_rule(deny_rule("DOCKER-USER", "172.17.0.5", TAG))

        self.assertEqual(ctx.exception.returncode, 1)
        self.assertIn("Bad rule", str(ctx.exception))

    @patch("comfyui_firewall.firewall_manager.subprocess.run", side_effect=FileNotFoundError())
    def test_missing_binary(self, mock_run):
        with self.assertRaises(FirewallCommandError) as ctx:
            self.firewall.list_rules()

        self.assertIsNone(ctx.exception.returncode)
        self.assertIn("iptables not found", str(ctx.exception))

    @patch("comfyui_firewall.firewall_manager.subprocess.run")
    def test_custom_binary_and_chain(self, mock_run):
        mock_run.return_value = completed(["iptables-legacy"])
        firewall = FirewallManager(chain="FORWARD", iptables_binary="iptables-legacy")

        self.assertEqual(firewall.list_rules(), [])
        mock_run.assert_called_once_with(
            ["iptables-legacy", "-S", "FORWARD"], capture_output=True, text=True, check=False
        )


if __name__ == "__main__":
    unittest.main()
