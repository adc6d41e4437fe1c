"""ACL policy expansion, API key storage and control-server helpers for a mesh VPN."""

__version__ = "0.1.0"

__all__ = ["acl_types", "acls", "api_keys", "app", "state"]