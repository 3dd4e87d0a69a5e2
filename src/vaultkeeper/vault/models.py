# Vault - Data Model
#
# Plain dataclasses exchanged with the entity store. Rows in, rows out;
# no behaviour beyond serialization lives here.
#
#   Group            folder node, parent_id None = root
#   GroupMembership  item -> group edge, group_id None = unfiled
#   ItemDetails      the secret record itself
#   KeyValue         ordered custom fields of an item
#   Attachment       file metadata pointing at content-addressed binary data

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class Group:
    """A folder in the vault tree."""
    id: str
    name: str = ""
    parent_id: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    order: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GroupMembership:
    item_id: str
    group_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ItemDetails:
    """A secret record. Any string field may hold a reference token."""
    id: str
    title: str = ""
    username: Optional[str] = None
    password: Optional[str] = None
    url: Optional[str] = None
    note: Optional[str] = None
    otp_secret: Optional[str] = None
    tags: Optional[str] = None    # Comma-separated
    icon: Optional[str] = None
    color: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self, include_secrets: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if not include_secrets:
            data.pop("password")
            data.pop("otp_secret")
        return data


@dataclass
class KeyValue:
    """A custom field on an item."""
    id: str
    item_id: str
    key: Optional[str] = None
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Attachment:
    """Attachment metadata; the bytes live once per hash in the binaries table."""
    id: str
    item_id: str
    binary_hash: str
    file_name: str = ""
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
