import ipaddress

import pytest

from meshacl.acl_types import (
    ACL,
    ACLError,
    ACLPolicy,
    EmptyPolicyError,
    InvalidTagError,
    parse_hosts,
    parse_hosts_yaml,
    parse_hujson,
)


def test_parse_hosts():
    hosts = parse_hosts(
        b'{"example-host-1": "100.100.100.100","example-host-2": "100.100.101.100/24"}'
    )
    assert str(hosts["example-host-1"]) == "100.100.100.100/32"
    assert str(hosts["example-host-2"]) == "100.100.101.100/24"


def test_parse_invalid_cidr():
    with pytest.raises(ValueError):
        parse_hosts('{"example-host-1": "100.100.100.100/42"}')


def test_parse_hosts_accepts_comments():
    hosts = parse_hosts('{\n // home\n "home": "192.168.1.0/24",\n}')
    assert hosts == {"home": ipaddress.ip_interface("192.168.1.0/24")}


def test_parse_hosts_yaml():
    hosts = parse_hosts_yaml("net: 10.0.0.0/8\n")
    assert str(hosts["net"]) == "10.0.0.0/8"


def test_parse_hosts_yaml_requires_prefix():
    with pytest.raises(ValueError):
        parse_hosts_yaml("host: 10.0.0.1\n")


def test_parse_hujson_strips_comments_and_trailing_commas():
    text = '{"a": "http://x//y", /* note */ "b": [1, 2,], // end\n}'
    assert parse_hujson(text) == {"a": "http://x//y", "b": [1, 2]}


def test_parse_hujson_escaped_quote_in_string():
    assert parse_hujson('{"a": "say \\"hi\\" // not a comment",}') == {
        "a": 'say "hi" // not a comment'
    }


def test_parse_hujson_unterminated_comment():
    with pytest.raises(ValueError):
        parse_hujson('{"a": 1 /* open')


def test_parse_hujson_broken():
    with pytest.raises(ValueError):
        parse_hujson('{"a": ')


def test_from_dict():
    policy = ACLPolicy.from_dict(
        {
            "groups": {"group:example": ["user1"]},
            "hosts": {"host-1": "100.100.100.100"},
            "tagOwners": {"tag:web": ["user1"]},
            "acls": [{"action": "accept", "proto": "tcp", "src": ["*"], "dst": ["*:*"]}],
            "tests": [{"src": "user1", "accept": ["host-1:80"]}],
        }
    )
    assert policy.groups == {"group:example": ["user1"]}
    assert str(policy.hosts["host-1"]) == "100.100.100.100/32"
    assert policy.tag_owners == {"tag:web": ["user1"]}
    assert policy.acls == [ACL("accept", "tcp", ["*"], ["*:*"])]
    assert policy.tests[0].source == "user1"
    assert policy.tests[0].deny == []


def test_from_dict_rejects_non_mapping():
    with pytest.raises(ValueError):
        ACLPolicy.from_dict(["not", "a", "policy"])


def test_is_zero():
    assert ACLPolicy().is_zero() is True
    assert ACLPolicy(tag_owners={"tag:a": ["x"]}).is_zero() is True
    assert ACLPolicy(groups={"group:a": ["x"]}).is_zero() is False
    assert ACLPolicy(acls=[ACL(action="accept")]).is_zero() is False


def test_error_hierarchy_and_messages():
    assert str(EmptyPolicyError()) == "empty policy"
    assert isinstance(InvalidTagError(), ACLError)
    with pytest.raises(ValueError):
        raise EmptyPolicyError()