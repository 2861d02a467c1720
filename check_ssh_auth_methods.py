#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
check_ssh_auth_methods.py

Nagios/Icinga style check: which SSH authentication methods does a server
offer for the given users, and does that match the declared policy?

Example:
  python check_ssh_auth_methods.py --host ssh.example.org -u root -u admin --password a

Exit codes: 0 OK, 2 CRITICAL (policy mismatch), 3 UNKNOWN (probe or
configuration problem).
"""

import argparse
import functools
import json
import logging
import math
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from probe_ssh_auth_methods import TRANSPORTS, Probe, ProbeError, probe_openssh
from ssh_auth_check import ProbeReport, Status, run_check
from ssh_auth_policy import ConfigurationError, PolicyRegistry

UTC = timezone.utc

EPILOG = """\
allow:  authentication method must be allowed
forbid: authentication method must not be allowed (default if not stated otherwise)
ignore: authentication method is not checked

Example:
  check_ssh_auth_methods.py --host <host> -u root -u admin --password a
"""


def now_utc() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


class PluginArgumentParser(argparse.ArgumentParser):
    """Argument errors must end as UNKNOWN, not argparse's exit code 2."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(int(Status.UNKNOWN), f"{self.prog}: error: {message}\n")


def positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timeout: {value!r}") from None
    if not (math.isfinite(seconds) and seconds > 0):
        raise argparse.ArgumentTypeError(f"timeout must be greater than 0, got {value!r}")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    ap = PluginArgumentParser(
        description="Check which SSH authentication methods a server offers against a policy.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("--host", default="", help="Host to connect to (required)")
    ap.add_argument("-p", "--port", type=int, default=22, help="SSH port (default: 22)")
    ap.add_argument(
        "-u",
        "--user",
        action="append",
        default=[],
        dest="users",
        help="SSH user to check, repeat for multiple users (default: root)",
    )
    ap.add_argument(
        "-t",
        "--timeout",
        type=positive_seconds,
        default=10.0,
        help="SSH timeout in seconds, rounded up to whole seconds for ssh ConnectTimeout (default: 10)",
    )
    ap.add_argument("--transport", choices=sorted(TRANSPORTS), default="openssh", help="Probe to use (default: openssh)")
    ap.add_argument("--ssh-binary", default="ssh", help="OpenSSH client to run (default: ssh from PATH)")
    ap.add_argument("--concurrency", type=int, default=1, help="Users probed in parallel (default: 1)")
    ap.add_argument(
        "--keep-going",
        action="store_true",
        help="Report UNKNOWN for a user whose probe fails instead of aborting the whole check",
    )
    ap.add_argument("--output", default="", help="Optional JSONL file for per-user results")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug output on stderr")

    for method in PolicyRegistry.defaults():
        ap.add_argument(
            f"--{method.name}",
            metavar="POLICY",
            default=None,
            help=f"{method.display_name} authentication, set to a[llow], f[orbid], i[gnore] "
            f"(default: {method.policy.value})",
        )
    return ap


def build_registry(args: argparse.Namespace) -> PolicyRegistry:
    registry = PolicyRegistry.defaults()
    for name in registry.names():
        token = getattr(args, name)
        if token is not None:
            registry.apply_override(name, token)
    return registry


def select_probe(args: argparse.Namespace) -> Probe:
    if args.transport == "openssh":
        return functools.partial(probe_openssh, ssh_binary=args.ssh_binary)
    return TRANSPORTS[args.transport]


def write_results(path: Path, report: ProbeReport, host: str, port: int) -> None:
    ts = now_utc()
    with path.open("w", encoding="utf-8") as fh:
        for verdict in report.verdicts:
            item = {"ts": ts, "host": host, "port": port}
            item.update(verdict.to_dict())
            fh.write(json.dumps(item, ensure_ascii=True) + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not args.host:
        print("--host has to be set!")
        print("See -h for more details.")
        return int(Status.UNKNOWN)

    users = args.users or ["root"]

    try:
        template = build_registry(args)
        report = run_check(
            template,
            select_probe(args),
            args.host,
            args.port,
            users,
            args.timeout,
            concurrency=args.concurrency,
            keep_going=args.keep_going,
        )
    except ConfigurationError as e:
        print(f"UNKNOWN: invalid configuration: {e}")
        return int(Status.UNKNOWN)
    except ProbeError as e:
        print(f"UNKNOWN: {e}")
        return int(Status.UNKNOWN)

    print(report.render())

    if args.output:
        write_results(Path(args.output), report, args.host, args.port)

    return int(report.status)


if __name__ == "__main__":
    raise SystemExit(main())
