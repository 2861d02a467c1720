# -*- coding: utf-8 -*-
"""
probe_ssh_auth_methods.py

Transport probes that ask an SSH server which authentication methods it
advertises, without trying any credentials.

Both probes return the same thing: the raw diagnostic text of an
`ssh -v` style session plus a success flag and an error descriptor.

- probe_openssh: runs the system OpenSSH client in batch mode with public
  key authentication disabled and captures its verbose output.
- probe_paramiko: uses paramiko's userauth "none" request and writes what
  it learned in the same diagnostic dialect.
"""

import logging
import math
import re
import shutil
import socket
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional

import paramiko

logger = logging.getLogger(__name__)

# ssh(1) exits 255 on every error, a failed authentication included.
AUTH_FAILURE_ERROR = "exit status 255"

# Extra wall-clock time on top of ConnectTimeout before the client is killed.
PROCESS_GRACE_SECONDS = 5.0

SSH_BANNER_RE = re.compile(r"^SSH-(?P<protocol>\d\.\d+)-(?P<software>.+)$")


class ProbeError(RuntimeError):
    """The probe itself is broken; the server's policy is unknown."""


class ProbeUnavailable(ProbeError):
    pass


class UnexpectedProbeFailure(ProbeError):
    pass


class UnsupportedServer(ProbeError):
    pass


@dataclass(frozen=True)
class ProbeResult:
    output: bytes
    succeeded: bool
    error: Optional[str] = None


Probe = Callable[[str, int, str, float], ProbeResult]


def find_ssh(ssh_binary: str = "ssh") -> str:
    path = shutil.which(ssh_binary)
    if not path:
        raise ProbeUnavailable(f"Can't find ssh binary: {ssh_binary}")
    return path


def build_ssh_command(ssh_path: str, host: str, port: int, username: str, timeout: float) -> List[str]:
    # PubkeyAuthentication is disabled so local keys never log us in;
    # the server still lists publickey as a method that can continue.
    # ConnectTimeout only takes whole seconds.
    return [
        ssh_path,
        "-v",
        "-o", "BatchMode yes",
        "-o", "PubkeyAuthentication no",
        "-o", "StrictHostKeyChecking no",
        "-o", f"ConnectTimeout {math.ceil(timeout)}",
        "-l", username,
        "-p", str(port),
        host,
        "exit",
    ]


def probe_openssh(host: str, port: int, username: str, timeout: float, ssh_binary: str = "ssh") -> ProbeResult:
    cmd = build_ssh_command(find_ssh(ssh_binary), host, port, username, timeout)
    logger.debug("Running: %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout + PROCESS_GRACE_SECONDS,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        return ProbeResult(e.output or b"", False, f"timed out after {e.timeout:g}s")
    except OSError as e:
        raise ProbeUnavailable(f"Can't run ssh binary: {e}") from e

    if proc.returncode == 0:
        return ProbeResult(proc.stdout, True)
    return ProbeResult(proc.stdout, False, f"exit status {proc.returncode}")


def _version_line(banner: str) -> str:
    m = SSH_BANNER_RE.match(banner.strip())
    if not m:
        return f"debug1: Remote software version string: {banner.strip()}"
    return f"debug1: Remote protocol version {m.group('protocol')}, remote software version {m.group('software')}"


def probe_paramiko(host: str, port: int, username: str, timeout: float) -> ProbeResult:
    lines = [f"debug1: Connecting to {host} port {port}."]
    succeeded = False
    error: Optional[str] = None

    sock = None
    transport = None
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
        sock.settimeout(timeout)
        transport = paramiko.Transport(sock)
        transport.start_client(timeout=timeout)
        lines.append(_version_line(transport.remote_version or ""))

        try:
            transport.auth_none(username)
            lines.append("debug1: Authentication succeeded (none).")
            succeeded = True
        except paramiko.BadAuthenticationType as e:
            lines.append(f"debug1: Authentications that can continue: {','.join(e.allowed_types or [])}")
            error = AUTH_FAILURE_ERROR
        except paramiko.AuthenticationException as e:
            lines.append(f"debug1: Authentication failed: {e}")
            error = AUTH_FAILURE_ERROR
    except (OSError, paramiko.SSHException) as e:
        lines.append(f"debug1: {e}")
        error = str(e) or e.__class__.__name__
    finally:
        if transport is not None:
            transport.close()
        if sock is not None:
            sock.close()

    output = "\n".join(lines) + "\n"
    return ProbeResult(output.encode("utf-8"), succeeded, error)


TRANSPORTS = {
    "openssh": probe_openssh,
    "paramiko": probe_paramiko,
}
