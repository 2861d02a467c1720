# -*- coding: utf-8 -*-
"""
ssh_auth_policy.py

Authentication method policy model: the known SSH authentication methods,
the administrator's declared policy for each (allow / forbid / ignore) and
the rule that compares a policy with what the server actually offered.
"""

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Tuple


class ConfigurationError(ValueError):
    """Invalid check configuration; nothing has been probed yet."""


class InvalidPolicyToken(ConfigurationError):
    pass


class MethodNotFound(ConfigurationError):
    pass


class Policy(Enum):
    ALLOW = "allowed"
    FORBID = "forbidden"
    IGNORE = "ignored"

    @classmethod
    def from_token(cls, token: str) -> "Policy":
        # Only the first character counts, so "a", "allow" and "allowed" all work.
        if not token:
            raise InvalidPolicyToken("argument too short, requires at least one character")
        policy = _TOKENS.get(token[0])
        if policy is None:
            raise InvalidPolicyToken(f"unknown state {token!r}, need a[llow], f[orbid], i[gnore]")
        return policy


_TOKENS = {"a": Policy.ALLOW, "f": Policy.FORBID, "i": Policy.IGNORE}

# (policy, offered) -> (ok, explanation); IGNORE is handled before lookup.
_OUTCOMES = {
    (Policy.ALLOW, True): (True, "allowed"),
    (Policy.FORBID, False): (True, "forbidden"),
    (Policy.ALLOW, False): (False, "forbidden but should be allowed"),
    (Policy.FORBID, True): (False, "allowed but should be forbidden"),
}


@dataclass(frozen=True)
class MethodResult:
    name: str
    display_name: str
    ok: bool
    explanation: str

    def __str__(self) -> str:
        return f"{self.display_name}: {self.explanation}"


@dataclass
class AuthMethod:
    name: str
    display_name: str
    policy: Policy = Policy.FORBID
    offered: bool = False

    def set_policy(self, token: str) -> None:
        self.policy = Policy.from_token(token)

    def set_offered_if_present(self, auth_line: str) -> None:
        """Mark the method offered if its name occurs in the (lower-cased) auth line.

        Never clears an already set flag.
        """
        if self.name in auth_line:
            self.offered = True

    def evaluate(self) -> Tuple[bool, str]:
        if self.policy is Policy.IGNORE:
            return True, "ignored"
        return _OUTCOMES[(self.policy, self.offered)]

    def result(self) -> MethodResult:
        ok, explanation = self.evaluate()
        return MethodResult(self.name, self.display_name, ok, explanation)


# Canonical order; reports list methods in this order.
DEFAULT_METHODS: Tuple[Tuple[str, str, Policy], ...] = (
    ("none", "None", Policy.FORBID),
    ("hostbased", "Hostbased", Policy.FORBID),
    ("password", "Password", Policy.FORBID),
    ("keyboardinteractive", "KeyboardInteractive", Policy.FORBID),
    ("publickey", "PublicKey", Policy.ALLOW),
    ("gssapikeyex", "GssapiKeyex", Policy.IGNORE),
    ("gssapiwithmic", "GssapiWithMic", Policy.IGNORE),
)


class PolicyRegistry:
    """Ordered collection of AuthMethods.

    The registry built at startup is a read-only template; every user is
    evaluated against its own copy().
    """

    def __init__(self, methods: List[AuthMethod]):
        self._methods = methods

    @classmethod
    def defaults(cls) -> "PolicyRegistry":
        return cls([AuthMethod(name, display, policy) for name, display, policy in DEFAULT_METHODS])

    def __iter__(self) -> Iterator[AuthMethod]:
        return iter(self._methods)

    def __len__(self) -> int:
        return len(self._methods)

    def names(self) -> List[str]:
        return [m.name for m in self._methods]

    def get(self, name: str) -> AuthMethod:
        for method in self._methods:
            if method.name == name:
                return method
        raise MethodNotFound(f"unknown authentication method {name!r}, known: {', '.join(self.names())}")

    def apply_override(self, name: str, token: str) -> None:
        try:
            self.get(name).set_policy(token)
        except InvalidPolicyToken as e:
            raise InvalidPolicyToken(f"{name}: {e}") from e

    def copy(self) -> "PolicyRegistry":
        return PolicyRegistry(copy.deepcopy(self._methods))

    def evaluate(self) -> List[MethodResult]:
        return [m.result() for m in self._methods]
