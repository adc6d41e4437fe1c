"""Expansion of an ACL policy into packet filter rules."""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from meshacl.acl_types import (
    ACLPolicy,
    EmptyPolicyError,
    InvalidActionError,
    InvalidGroupError,
    InvalidPortFormatError,
    InvalidTagError,
    WildcardRequiredError,
    _parse_prefix,
    parse_hujson,
)

log = logging.getLogger(__name__)

PORT_RANGE_BEGIN = 0
PORT_RANGE_END = 65535

PROTOCOL_ICMP = 1
PROTOCOL_IGMP = 2
PROTOCOL_IPV4 = 4
PROTOCOL_TCP = 6
PROTOCOL_EGP = 8
PROTOCOL_IGP = 9
PROTOCOL_UDP = 17
PROTOCOL_GRE = 47
PROTOCOL_ESP = 50
PROTOCOL_AH = 51
PROTOCOL_IPV6_ICMP = 58
PROTOCOL_SCTP = 132
PROTOCOL_FC = 133

_NAMED_PROTOCOLS: dict[str, tuple[list[int], bool]] = {
    "": ([PROTOCOL_ICMP, PROTOCOL_IPV6_ICMP, PROTOCOL_TCP, PROTOCOL_UDP], False),
    "igmp": ([PROTOCOL_IGMP], True),
    "ipv4": ([PROTOCOL_IPV4], True),
    "ip-in-ip": ([PROTOCOL_IPV4], True),
    "tcp": ([PROTOCOL_TCP], False),
    "egp": ([PROTOCOL_EGP], True),
    "igp": ([PROTOCOL_IGP], True),
    "udp": ([PROTOCOL_UDP], False),
    "gre": ([PROTOCOL_GRE], True),
    "esp": ([PROTOCOL_ESP], True),
    "ah": ([PROTOCOL_AH], True),
    "sctp": ([PROTOCOL_SCTP], False),
    "icmp": ([PROTOCOL_ICMP, PROTOCOL_IPV6_ICMP], True),
}

_PORT_ALLOWING = {PROTOCOL_TCP, PROTOCOL_UDP, PROTOCOL_SCTP}
_INTEGER = re.compile(r"[+-]?[0-9]+")
_DIGITS = re.compile(r"[0-9]+")
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9\-.]+")
_LABEL_MAX_LENGTH = 63


@dataclass
class Node:
    """A machine as seen by the policy engine."""

    namespace: str = ""
    ip_addresses: list[str] = field(default_factory=list)
    request_tags: list[str] = field(default_factory=list)
    forced_tags: list[str] = field(default_factory=list)
    hostname: str = ""
    id: int = 0


@dataclass(frozen=True)
class PortRange:
    first: int
    last: int


@dataclass(frozen=True)
class NetPortRange:
    ip: str
    ports: PortRange


@dataclass
class FilterRule:
    src_ips: list[str]
    dst_ports: list[NetPortRange]
    ip_proto: list[int]


def normalize_name(name: str, strip_email_domain: bool) -> str:
    """Turn a user or e-mail name into a DNS-safe namespace name."""
    name = name.lower().replace("'", "")
    at_index = name.find("@")
    if strip_email_domain and at_index > 0:
        name = name[:at_index]
    else:
        name = name.replace("@", ".")
    name = _INVALID_NAME_CHARS.sub("-", name)
    for label in name.split("."):
        if len(label) > _LABEL_MAX_LENGTH:
            raise ValueError(
                f"label {label!r} is {len(label)} chars long, "
                f"must not be over {_LABEL_MAX_LENGTH} chars"
            )
    return name


def load_acl_policy(path: str | Path) -> ACLPolicy:
    """Read a policy from a HuJSON or YAML file."""
    path = Path(path)
    log.debug("Loading ACL policy from %s", path)
    content = path.read_bytes()
    if path.suffix in (".yml", ".yaml"):
        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid YAML policy: {exc}") from exc
    else:
        document = parse_hujson(content)
    policy = ACLPolicy.from_dict(document if document is not None else {})
    if policy.is_zero():
        raise EmptyPolicyError()
    return policy


def parse_protocol(protocol: str) -> tuple[list[int], bool]:
    """Return the IP protocol numbers and whether ports must be ``*``."""
    if protocol in _NAMED_PROTOCOLS:
        numbers, needs_wildcard = _NAMED_PROTOCOLS[protocol]
        return list(numbers), needs_wildcard
    if not _INTEGER.fullmatch(protocol):
        raise ValueError(f"unknown protocol {protocol!r}")
    number = int(protocol)
    return [number], number not in _PORT_ALLOWING


def _parse_port(text: str) -> int:
    if not _DIGITS.fullmatch(text):
        raise ValueError(f"invalid port {text!r}")
    value = int(text)
    if value > PORT_RANGE_END:
        raise ValueError(f"port {text!r} out of range")
    return value


def expand_ports(ports_str: str, needs_wildcard: bool) -> list[PortRange]:
    """Parse ``*``, ``80``, ``80,443`` or ``1000-2000`` style port lists."""
    if ports_str == "*":
        return [PortRange(PORT_RANGE_BEGIN, PORT_RANGE_END)]
    if needs_wildcard:
        raise WildcardRequiredError()
    ports = []
    for part in ports_str.split(","):
        bounds = part.split("-")
        if len(bounds) == 1:
            port = _parse_port(bounds[0])
            ports.append(PortRange(port, port))
        elif len(bounds) == 2:
            ports.append(PortRange(_parse_port(bounds[0]), _parse_port(bounds[1])))
        else:
            raise InvalidPortFormatError()
    return ports


def filter_nodes_by_namespace(nodes: list[Node], namespace: str) -> list[Node]:
    return [node for node in nodes if node.namespace == namespace]


def expand_group(policy: ACLPolicy, group: str, strip_email_domain: bool) -> list[str]:
    """Return the namespaces listed in a group."""
    if group not in policy.groups:
        raise InvalidGroupError(f"group {group} isn't registered. invalid group")
    members = []
    for member in policy.groups[group]:
        if member.startswith("group:"):
            raise InvalidGroupError(
                "invalid group. A group cannot be composed of groups."
            )
        try:
            members.append(normalize_name(member, strip_email_domain))
        except ValueError as exc:
            raise InvalidGroupError(
                f"failed to normalize group {member!r}, err: invalid group"
            ) from exc
    return members


def expand_tag_owners(
    policy: ACLPolicy, tag: str, strip_email_domain: bool
) -> list[str]:
    """Return the namespaces owning a tag, with groups expanded."""
    if tag not in policy.tag_owners:
        raise InvalidTagError(
            f"invalid tag. {tag} isn't owned by a TagOwner. Please add one first."
        )
    owners = []
    for owner in policy.tag_owners[tag]:
        if owner.startswith("group:"):
            owners.extend(expand_group(policy, owner, strip_email_domain))
        else:
            owners.append(owner)
    return owners


def exclude_correctly_tagged_nodes(
    policy: ACLPolicy, nodes: list[Node], namespace: str, strip_email_domain: bool
) -> list[Node]:
    """Drop nodes that carry a known tag or any forced tag."""
    tags = set(policy.tag_owners)
    return [
        node
        for node in nodes
        if not node.forced_tags and not any(tag in tags for tag in node.request_tags)
    ]


def _addresses(nodes: list[Node]) -> list[str]:
    return [address for node in nodes for address in node.ip_addresses]


def expand_alias(
    nodes: list[Node], policy: ACLPolicy, alias: str, strip_email_domain: bool
) -> list[str]:
    """Resolve a wildcard, group, tag, namespace, host, IP or CIDR."""
    if alias == "*":
        return ["*"]
    log.debug("Expanding %s", alias)

    if alias.startswith("group:"):
        namespaces = expand_group(policy, alias, strip_email_domain)
        return [
            address
            for namespace in namespaces
            for address in _addresses(filter_nodes_by_namespace(nodes, namespace))
        ]

    if alias.startswith("tag:"):
        ips = _addresses([node for node in nodes if alias in node.forced_tags])
        try:
            owners = expand_tag_owners(policy, alias, strip_email_domain)
        except InvalidTagError as exc:
            if not ips:
                raise InvalidTagError(
                    f"invalid tag. {alias} isn't owned by a TagOwner "
                    "and no forced tags are defined"
                ) from exc
            return ips
        for owner in owners:
            for node in filter_nodes_by_namespace(nodes, owner):
                if alias in node.request_tags:
                    ips.extend(node.ip_addresses)
        return ips

    in_namespace = exclude_correctly_tagged_nodes(
        policy, filter_nodes_by_namespace(nodes, alias), alias, strip_email_domain
    )
    ips = _addresses(in_namespace)
    if ips:
        return ips

    if alias in policy.hosts:
        return [str(policy.hosts[alias])]

    try:
        return [str(ipaddress.ip_address(alias))]
    except ValueError:
        pass

    try:
        return [str(_parse_prefix(alias))]
    except ValueError:
        pass

    log.warning("No IPs found with the alias %s", alias)
    return []


def generate_policy_destinations(
    nodes: list[Node],
    policy: ACLPolicy,
    dest: str,
    needs_wildcard: bool,
    strip_email_domain: bool,
) -> list[NetPortRange]:
    """Expand one ``alias:ports`` destination into address/port pairs."""
    tokens = dest.split(":")
    if not 2 <= len(tokens) <= 3:
        raise InvalidPortFormatError()
    alias = tokens[0] if len(tokens) == 2 else f"{tokens[0]}:{tokens[1]}"
    expanded = expand_alias(nodes, policy, alias, strip_email_domain)
    ports = expand_ports(tokens[-1], needs_wildcard)
    return [NetPortRange(ip, port) for ip in expanded for port in ports]


def generate_acl_rules(
    policy: ACLPolicy | None, nodes: list[Node], strip_email_domain: bool
) -> list[FilterRule]:
    """Turn every rule of the policy into a filter rule."""
    if policy is None:
        raise EmptyPolicyError()
    rules = []
    for index, acl in enumerate(policy.acls):
        if acl.action != "accept":
            raise InvalidActionError()
        src_ips = []
        for inner, source in enumerate(acl.sources):
            try:
                src_ips.extend(expand_alias(nodes, policy, source, strip_email_domain))
            except ValueError:
                log.error("Error parsing ACL %d, Source %d", index, inner)
                raise
        try:
            protocols, needs_wildcard = parse_protocol(acl.protocol)
        except ValueError:
            log.error("Error parsing ACL %d. protocol unknown %s", index, acl.protocol)
            raise
        dst_ports = []
        for inner, dest in enumerate(acl.destinations):
            try:
                dst_ports.extend(
                    generate_policy_destinations(
                        nodes, policy, dest, needs_wildcard, strip_email_domain
                    )
                )
            except ValueError:
                log.error("Error parsing ACL %d, Destination %d", index, inner)
                raise
        rules.append(FilterRule(src_ips=src_ips, dst_ports=dst_ports, ip_proto=protocols))
    return rules