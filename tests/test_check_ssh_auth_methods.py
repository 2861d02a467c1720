"""Tests for the command-line front end."""

import json
import subprocess
from unittest.mock import patch

import pytest

import check_ssh_auth_methods
from check_ssh_auth_methods import build_parser, build_registry, main
from probe_ssh_auth_methods import AUTH_FAILURE_ERROR, ProbeResult, ProbeUnavailable
from ssh_auth_policy import Policy

AUTH_OUTPUT = (
    b"OpenSSH_9.6p1 Ubuntu-3ubuntu13, OpenSSL 3.0.13 30 Jan 2024\n"
    b"debug1: Authentications that can continue: publickey,password\n"
)


def fake_probe(host, port, username, timeout, ssh_binary="ssh"):
    return ProbeResult(AUTH_OUTPUT, False, AUTH_FAILURE_ERROR)


@pytest.fixture
def openssh():
    with patch("check_ssh_auth_methods.probe_openssh", side_effect=fake_probe) as probe:
        yield probe


class TestArguments:
    def test_defaults(self) -> None:
        args = build_parser().parse_args(["--host", "h"])
        assert args.port == 22
        assert args.timeout == 10.0
        assert args.users == []
        assert args.transport == "openssh"

    def test_repeated_users(self) -> None:
        args = build_parser().parse_args(["--host", "h", "-u", "root", "-u", "admin"])
        assert args.users == ["root", "admin"]

    def test_method_overrides(self) -> None:
        args = build_parser().parse_args(["--host", "h", "--password", "a", "--gssapikeyex", "forbid"])
        registry = build_registry(args)
        assert registry.get("password").policy is Policy.ALLOW
        assert registry.get("gssapikeyex").policy is Policy.FORBID
        assert registry.get("publickey").policy is Policy.ALLOW

    def test_fractional_timeout(self) -> None:
        args = build_parser().parse_args(["--host", "h", "-t", "2.5"])
        assert args.timeout == 2.5

    @pytest.mark.parametrize("value", ["0", "-1", "nan", "inf", "soon"])
    def test_invalid_timeout_exits_unknown(self, value: str) -> None:
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["--host", "h", "-t", value])
        assert exc.value.code == 3

    def test_bad_argument_exits_unknown(self) -> None:
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["--port", "ssh"])
        assert exc.value.code == 3


class TestMain:
    def test_missing_host(self, capsys) -> None:
        assert main([]) == 3
        assert "--host has to be set!" in capsys.readouterr().out

    def test_default_policy_is_critical(self, openssh, capsys) -> None:
        assert main(["--host", "h"]) == 2
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "CRITICAL for user(s) root"
        assert "Password: allowed but should be forbidden" in out[1]
        openssh.assert_called_once_with("h", 22, "root", 10.0, ssh_binary="ssh")

    def test_password_allowed_is_ok(self, openssh, capsys) -> None:
        assert main(["--host", "h", "-u", "root", "-u", "admin", "--password", "a"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "OK, checked user(s) root, admin"
        assert out[1].startswith("OK:  root (")
        assert out[2].startswith("OK: admin (")

    def test_invalid_token_is_unknown(self, openssh, capsys) -> None:
        assert main(["--host", "h", "--password", "yes"]) == 3
        assert capsys.readouterr().out.startswith("UNKNOWN: invalid configuration")
        openssh.assert_not_called()

    def test_probe_error_is_unknown(self, capsys) -> None:
        with patch("check_ssh_auth_methods.probe_openssh", side_effect=ProbeUnavailable("Can't find ssh binary: ssh")):
            assert main(["--host", "h"]) == 3
        assert capsys.readouterr().out == "UNKNOWN: Can't find ssh binary: ssh\n"

    def test_fractional_timeout_reaches_ssh_as_whole_seconds(self, capsys) -> None:
        with patch("probe_ssh_auth_methods.shutil.which", return_value="/usr/bin/ssh"), patch(
            "probe_ssh_auth_methods.subprocess.run",
            return_value=subprocess.CompletedProcess([], 255, stdout=AUTH_OUTPUT),
        ) as run:
            assert main(["--host", "h", "-t", "2.5", "--password", "a"]) == 0

        assert "ConnectTimeout 3" in run.call_args.args[0]
        assert capsys.readouterr().out.startswith("OK, checked user(s) root")

    def test_paramiko_transport(self, capsys) -> None:
        with patch.dict(check_ssh_auth_methods.TRANSPORTS, {"paramiko": fake_probe}):
            assert main(["--host", "h", "--transport", "paramiko", "--password", "a"]) == 0

    def test_output_file(self, openssh, tmp_path) -> None:
        path = tmp_path / "results.jsonl"
        main(["--host", "h", "-p", "2222", "-u", "root", "--output", str(path)])

        records = [json.loads(line) for line in path.read_text().splitlines()]
        assert len(records) == 1
        assert records[0]["host"] == "h"
        assert records[0]["port"] == 2222
        assert records[0]["user"] == "root"
        assert records[0]["status"] == "CRITICAL"
        assert records[0]["offered"] == ["publickey", "password"]
        assert records[0]["methods"][2] == {
            "name": "password",
            "ok": False,
            "result": "allowed but should be forbidden",
        }
