"""Policy document types, error classes and loaders for the ACL format."""

from __future__ import annotations

import ipaddress
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

import yaml

IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]


class ACLError(ValueError):
    """Base class for errors raised while handling an ACL policy."""


class EmptyPolicyError(ACLError):
    """The policy holds no groups, hosts or rules."""

    def __init__(self, message: str = "empty policy") -> None:
        super().__init__(message)


class InvalidActionError(ACLError):
    """A rule uses an action other than ``accept``."""

    def __init__(self, message: str = "invalid action") -> None:
        super().__init__(message)


class InvalidGroupError(ACLError):
    """A group is unknown or badly formed."""

    def __init__(self, message: str = "invalid group") -> None:
        super().__init__(message)


class InvalidTagError(ACLError):
    """A tag has no owner."""

    def __init__(self, message: str = "invalid tag") -> None:
        super().__init__(message)


class InvalidPortFormatError(ACLError):
    """A destination or port specification is malformed."""

    def __init__(self, message: str = "invalid port format") -> None:
        super().__init__(message)


class WildcardRequiredError(ACLError):
    """The protocol only accepts ``*`` as port."""

    def __init__(
        self, message: str = "wildcard as port is required for the protocol"
    ) -> None:
        super().__init__(message)


@dataclass
class ACL:
    """A single rule of the policy."""

    action: str = ""
    protocol: str = ""
    sources: list[str] = field(default_factory=list)
    destinations: list[str] = field(default_factory=list)


@dataclass
class ACLTest:
    """A policy self-test entry; kept as data only."""

    source: str = ""
    accept: list[str] = field(default_factory=list)
    deny: list[str] = field(default_factory=list)


def _text(value: Any, what: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        raise ValueError(f"{what}: expected a string, got {value!r}")
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"{what}: expected a string, got {value!r}")


def _text_list(value: Any, what: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what}: expected a list, got {value!r}")
    return [_text(item, what) for item in value]


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what}: expected a mapping, got {value!r}")
    return value


def _parse_prefix(text: str) -> IPInterface:
    """Parse ``address/bits`` keeping the address as written."""
    _, sep, bits = text.partition("/")
    if not sep or not (bits.isascii() and bits.isdigit()):
        raise ValueError(f"invalid IP prefix {text!r}")
    return ipaddress.ip_interface(text)


def _host_prefix(value: Any) -> IPInterface:
    if isinstance(value, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
        return value
    text = _text(value, "hosts")
    if "/" not in text:
        text += "/32"
    return _parse_prefix(text)


def _string_end(text: str, start: int) -> int:
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
        elif char == '"':
            return index + 1
        else:
            index += 1
    raise ValueError("unterminated string")


def _standardize(text: str) -> str:
    out: list[str] = []
    pending_comma: int | None = None
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == '"':
            end = _string_end(text, index)
            out.append(text[index:end])
            pending_comma = None
            index = end
            continue
        if text.startswith("//", index):
            newline = text.find("\n", index)
            index = length if newline == -1 else newline
            continue
        if text.startswith("/*", index):
            end = text.find("*/", index + 2)
            if end == -1:
                raise ValueError("unterminated block comment")
            out.append(" ")
            index = end + 2
            continue
        if char in "}]" and pending_comma is not None:
            out[pending_comma] = ""
        if char == ",":
            pending_comma = len(out)
        elif not char.isspace():
            pending_comma = None
        out.append(char)
        index += 1
    return "".join(out)


def parse_hujson(text: str | bytes) -> Any:
    """Decode JSON that may carry comments and trailing commas."""
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("utf-8")
    return json.loads(_standardize(text))


def parse_hosts(data: str | bytes) -> dict[str, IPInterface]:
    """Parse a JSON hosts object; bare addresses get a ``/32`` suffix."""
    raw = _mapping(parse_hujson(data), "hosts")
    return {name: _host_prefix(value) for name, value in raw.items()}


def parse_hosts_yaml(data: str | bytes) -> dict[str, IPInterface]:
    """Parse a YAML hosts mapping; every value must be a prefix."""
    try:
        loaded = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid YAML: {exc}") from exc
    raw = _mapping(loaded, "hosts")
    return {
        str(name): _parse_prefix(_text(value, "hosts")) for name, value in raw.items()
    }


@dataclass
class ACLPolicy:
    """A complete ACL policy."""

    groups: dict[str, list[str]] = field(default_factory=dict)
    hosts: dict[str, IPInterface] = field(default_factory=dict)
    tag_owners: dict[str, list[str]] = field(default_factory=dict)
    acls: list[ACL] = field(default_factory=list)
    tests: list[ACLTest] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> ACLPolicy:
        """Build a policy from a decoded JSON or YAML document."""
        document = _mapping(data, "policy")
        groups = {
            str(name): _text_list(members, "groups")
            for name, members in _mapping(document.get("groups"), "groups").items()
        }
        hosts = {
            str(name): _host_prefix(value)
            for name, value in _mapping(document.get("hosts"), "hosts").items()
        }
        tag_owners = {
            str(tag): _text_list(owners, "tagOwners")
            for tag, owners in _mapping(document.get("tagOwners"), "tagOwners").items()
        }
        acls = []
        for entry in document.get("acls") or []:
            rule = _mapping(entry, "acls")
            acls.append(
                ACL(
                    action=_text(rule.get("action"), "action"),
                    protocol=_text(rule.get("proto"), "proto"),
                    sources=_text_list(rule.get("src"), "src"),
                    destinations=_text_list(rule.get("dst"), "dst"),
                )
            )
        tests = []
        for entry in document.get("tests") or []:
            test = _mapping(entry, "tests")
            tests.append(
                ACLTest(
                    source=_text(test.get("src"), "src"),
                    accept=_text_list(test.get("accept"), "accept"),
                    deny=_text_list(test.get("deny"), "deny"),
                )
            )
        return cls(
            groups=groups, hosts=hosts, tag_owners=tag_owners, acls=acls, tests=tests
        )

    def is_zero(self) -> bool:
        """True when there are no groups, hosts or rules."""
        return not self.groups and not self.hosts and not self.acls