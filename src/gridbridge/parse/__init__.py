from .common import (
    decrypt_group_of_nodes,
    expand_hosts,
    parse_header_table,
    parse_key_values,
    require_keys,
    split_fields,
    split_hostlist,
)

__all__ = [
    "decrypt_group_of_nodes",
    "expand_hosts",
    "parse_header_table",
    "parse_key_values",
    "require_keys",
    "split_fields",
    "split_hostlist",
]
