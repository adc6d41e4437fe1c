# meshacl

Building blocks for the control plane of a mesh VPN: a policy engine that turns
a human-written access-control policy into packet-filter rules, a SQLite-backed
store for API keys, small helpers for server settings and bearer
authentication, and a tracker of when each namespace last changed.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## ACL policies

Policies are written in HuJSON (JSON with `//` and `/* */` comments and
trailing commas) or in YAML. A policy holds `groups`, `hosts`, `tagOwners`,
`acls` and `tests`.

```python
from meshacl.acls import Node, generate_acl_rules, load_acl_policy

policy = load_acl_policy("policy.hujson")

nodes = [
    Node(namespace="joe", ip_addresses=["100.64.0.1"]),
    Node(namespace="marc", ip_addresses=["100.64.0.2"], forced_tags=["tag:web"]),
]

for rule in generate_acl_rules(policy, nodes, strip_email_domain=True):
    print(rule.src_ips, rule.dst_ports, rule.ip_proto)
```

`load_acl_policy` reads files ending in `.yml` or `.yaml` as YAML and anything
else as HuJSON. It raises `EmptyPolicyError` when the policy has no groups,
hosts or rules.

`generate_acl_rules` returns one `FilterRule` per rule, with `src_ips`,
`dst_ports` (a list of `NetPortRange`, each an `ip` and a `PortRange` with
`first` and `last`) and `ip_proto`. Every rule must have the action `accept`;
anything else raises `InvalidActionError`.

### Aliases

A source, or the part of a destination before the ports, may be:

- `*`, which stays `*`;
- `group:name`, expanded to the addresses of every node in the group's
  namespaces (groups may not contain groups);
- `tag:name`, expanded to nodes that carry the tag as a forced tag, plus nodes
  of the tag's owners that request it; a tag with no owner and no forced users
  raises `InvalidTagError`;
- a namespace name, expanded to its nodes, leaving out nodes that carry a
  forced tag or request a tag listed in `tagOwners`;
- a name from the `hosts` table;
- an IP address or a CIDR prefix.

Group members are normalised into namespace names: lowercased, with
`strip_email_domain` deciding whether an e-mail such as `joe@example.com`
becomes `joe` or `joe.example.com`.

### Destinations and protocols

Destinations take the form `alias:ports`, where ports are `*`, a single port,
a range such as `5400-5500`, or a comma-separated list of these.

The `proto` field accepts `tcp`, `udp`, `sctp`, `icmp`, `igmp`, `ipv4`,
`ip-in-ip`, `egp`, `igp`, `gre`, `esp`, `ah` or a protocol number. Protocols
other than TCP, UDP and SCTP require `*` as the port, or
`WildcardRequiredError` is raised. An empty `proto` allows ICMP, ICMPv6, TCP
and UDP.

### Lower-level functions

`meshacl.acls` also offers `parse_protocol`, `expand_ports`, `expand_alias`,
`expand_group`, `expand_tag_owners`, `filter_nodes_by_namespace`,
`exclude_correctly_tagged_nodes`, `generate_policy_destinations` and
`normalize_name`. `meshacl.acl_types` offers `parse_hujson`, `parse_hosts`
(bare addresses get `/32`), `parse_hosts_yaml` and `ACLPolicy.from_dict`.
Policy errors are subclasses of `ACLError`, itself a `ValueError`.

## API keys

```python
from datetime import datetime, timedelta, timezone
from meshacl.api_keys import APIKeyStore

with APIKeyStore("keys.db") as store:
    key_str, key = store.create(datetime.now(timezone.utc) + timedelta(hours=24))
    assert store.validate(key_str)
    store.expire(key)
    assert not store.validate(key_str)
```

A key string has the form `prefix.secret`. It is returned only once, at
creation; the store keeps the prefix and a bcrypt hash of the secret.
`APIKeyStore` also has `list`, `get`, `get_by_id`, `destroy` and `close`.

`validate` returns `False` for an expired key. It raises `APIKeyParseError`
for a string without a dot, `APIKeyNotFoundError` for an unknown prefix and
`ValueError` when the secret does not match.

## Server helpers

`meshacl.app` provides:

- `lookup_tls_client_auth_mode(mode)`, mapping `disabled`, `relaxed` and
  `enforced` to a `ClientAuthMode`; unknown names give
  `REQUIRE_ANY_CLIENT_CERT` and `False`;
- `database_connection_string(...)`, building a PostgreSQL connection string
  or returning the SQLite path, and raising `UnsupportedDatabaseError` for
  other database types;
- `authenticate_bearer(header, validator)`, which checks an
  `Authorization: Bearer token` header with a validator such as
  `APIKeyStore.validate` and returns the token, or raises
  `AuthenticationError` with a `status` of 401 or 500.

## State tracking

`meshacl.state.StateTracker` records, per namespace, when the network state
last changed. It is given a callable that lists all namespaces, used when
`set_last_state_change_to_now` is called without names.
`get_last_state_change` returns the latest change among the given namespaces,
or among all of them, and the current time when nothing is recorded.

## What this package does not do

It runs no server: there is no HTTP or gRPC listener, no client registration
or map polling, no TLS certificate handling and no command-line tool. It keeps
no records of machines or namespaces; the nodes for policy expansion are
supplied by the caller as `Node` objects. The policy `tests` section is read
but not evaluated.