# -*- coding: utf-8 -*-
"""
ssh_auth_check.py

Turns transport probe output into per-user verdicts and an overall
monitoring status.

For every user:
  1. the probe runs against the host (bounded by its timeout),
  2. the outcome is verified (expected failure shape, OpenSSH marker),
  3. the first "authentications that can continue" line is extracted,
  4. every method in a private copy of the policy template is marked
     offered or not and evaluated.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

from probe_ssh_auth_methods import (
    AUTH_FAILURE_ERROR,
    Probe,
    ProbeError,
    ProbeResult,
    UnexpectedProbeFailure,
    UnsupportedServer,
)
from ssh_auth_policy import MethodResult, PolicyRegistry

logger = logging.getLogger(__name__)

AUTH_LINE_PREFIX = "debug1: authentications that can continue:"
SERVER_MARKER = "openssh"
NONE_METHOD = "none"


class Status(IntEnum):
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3


def normalize_output(raw: bytes) -> str:
    return raw.lower().decode("utf-8", errors="replace")


def find_auth_line(text: str) -> str:
    """Return the first line starting with the auth line prefix, or "".

    A missing line is not an error: the server may have accepted "none" or
    rejected the user before listing anything.
    """
    for line in text.splitlines():
        if line.startswith(AUTH_LINE_PREFIX):
            return line
    return ""


def offered_methods(auth_line: str) -> List[str]:
    if not auth_line.startswith(AUTH_LINE_PREFIX):
        return []
    tail = auth_line[len(AUTH_LINE_PREFIX):]
    return [m.strip() for m in tail.split(",") if m.strip()]


@dataclass
class UserVerdict:
    username: str
    results: List[MethodResult] = field(default_factory=list)
    offered: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and all(r.ok for r in self.results)

    @property
    def status(self) -> Status:
        if self.error is not None:
            return Status.UNKNOWN
        return Status.OK if self.ok else Status.CRITICAL

    def status_line(self) -> str:
        detail = self.error if self.error is not None else ", ".join(str(r) for r in self.results)
        return f"{self.status.name}: {self.username:>5} ({detail})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.username,
            "status": self.status.name,
            "offered": self.offered,
            "methods": [
                {"name": r.name, "ok": r.ok, "result": r.explanation}
                for r in self.results
            ],
            "error": self.error or "",
        }


def verify_probe_result(result: ProbeResult, text: str) -> None:
    if not result.succeeded:
        # Authentication was never going to complete; the failure is only
        # expected if the server listed what could continue.
        if result.error != AUTH_FAILURE_ERROR or AUTH_LINE_PREFIX not in text:
            raise UnexpectedProbeFailure(f"Error running ssh: {result.error}\n{text}")
    if SERVER_MARKER not in text:
        raise UnsupportedServer("SSH binary is not OpenSSH - only OpenSSH is supported!")


def evaluate_user(template: PolicyRegistry, username: str, result: ProbeResult) -> UserVerdict:
    text = normalize_output(result.output)
    verify_probe_result(result, text)

    methods = template.copy()
    if result.succeeded:
        # Logging in without further authentication proves "none" is accepted.
        methods.get(NONE_METHOD).offered = True

    auth_line = find_auth_line(text)
    logger.debug("%s: auth line %r", username, auth_line)
    for method in methods:
        method.set_offered_if_present(auth_line)

    return UserVerdict(username, methods.evaluate(), offered_methods(auth_line))


def check_user(
    template: PolicyRegistry,
    probe: Probe,
    host: str,
    port: int,
    username: str,
    timeout: float,
    keep_going: bool = False,
) -> UserVerdict:
    logger.debug("Probing %s@%s:%d", username, host, port)
    try:
        return evaluate_user(template, username, probe(host, port, username, timeout))
    except ProbeError as e:
        if not keep_going:
            raise
        logger.warning("%s: %s", username, e)
        return UserVerdict(username, error=str(e).splitlines()[0])


class ProbeReport:
    """Per-user verdicts in configuration order plus the overall status."""

    def __init__(self) -> None:
        self.verdicts: List[UserVerdict] = []

    def add(self, verdict: UserVerdict) -> None:
        self.verdicts.append(verdict)

    @property
    def status(self) -> Status:
        statuses = {v.status for v in self.verdicts}
        if Status.CRITICAL in statuses:
            return Status.CRITICAL
        if Status.UNKNOWN in statuses:
            return Status.UNKNOWN
        return Status.OK

    def summary_line(self) -> str:
        status = self.status
        if status is Status.OK:
            return f"OK, checked user(s) {', '.join(v.username for v in self.verdicts)}"
        # Each user is named next to its own severity, worst first.
        parts = []
        for severity in (Status.CRITICAL, Status.UNKNOWN):
            users = [v.username for v in self.verdicts if v.status is severity]
            if users:
                parts.append(f"{severity.name} for user(s) {', '.join(users)}")
        return "; ".join(parts)

    def lines(self) -> List[str]:
        return [self.summary_line()] + [v.status_line() for v in self.verdicts]

    def render(self) -> str:
        return "\n".join(self.lines())


def run_check(
    template: PolicyRegistry,
    probe: Probe,
    host: str,
    port: int,
    users: List[str],
    timeout: float,
    concurrency: int = 1,
    keep_going: bool = False,
) -> ProbeReport:
    report = ProbeReport()
    if concurrency <= 1:
        for user in users:
            report.add(check_user(template, probe, host, port, user, timeout, keep_going))
        return report

    with ThreadPoolExecutor(max_workers=concurrency) as ex:
        futures = [
            ex.submit(check_user, template, probe, host, port, user, timeout, keep_going)
            for user in users
        ]
        # Collected in submission order so the report keeps configuration order.
        try:
            for fut in futures:
                report.add(fut.result())
        except ProbeError:
            # Fail fast: probes that have not started yet never run.
            for fut in futures:
                fut.cancel()
            raise
    return report
