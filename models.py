"""
Models for GWS to RT sync: the diffsync membership model and the
directory records it is built from.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from diffsync import DiffSyncModel


class MemberKind(Enum):
    PERSON = "person"
    OTHER = "other"


@dataclass(frozen=True)
class ExternalMemberRef:
    """A member entry from a GWS effective_member listing."""

    subject_id: str
    kind: MemberKind = MemberKind.PERSON

    @classmethod
    def from_gws(cls, entry: Dict[str, Any], person_type: str = "uwnetid") -> "ExternalMemberRef":
        kind = MemberKind.PERSON if entry.get("type") == person_type else MemberKind.OTHER
        return cls(subject_id=str(entry.get("id", "")), kind=kind)


@dataclass
class ExternalGroup:
    """A GWS group together with its current effective members."""

    id: str
    name: str = ""
    external_group_id: Optional[str] = None
    members: List[ExternalMemberRef] = field(default_factory=list)

    @classmethod
    def from_gws(cls, entry: Dict[str, Any], members: Optional[List[ExternalMemberRef]] = None) -> "ExternalGroup":
        return cls(
            id=entry.get("id", ""),
            name=entry.get("name", "") or "",
            external_group_id=entry.get("regid") or None,
            members=list(members or []),
        )

    @property
    def person_members(self) -> List[ExternalMemberRef]:
        return [m for m in self.members if m.kind is MemberKind.PERSON]

    def as_record(self) -> Dict[str, Any]:
        """The shape handed to the group field mapping."""
        return {"id": self.id, "name": self.name, "regid": self.external_group_id}


class GroupMembership(DiffSyncModel):
    """
    DiffSync model representing a group membership.
    A membership is a relationship between a user (identified by RT user name) and a group.
    """
    _modelname = "membership"
    _identifiers = ("user_name", "group_name")
    _attributes = ()

    user_name: str
    group_name: str

    @classmethod
    def create(cls, adapter, ids, attrs):
        """Create this membership in the target adapter (RT)."""
        membership = cls(**ids, **attrs)
        membership.adapter = adapter

        # Queue the operation for the RT adapter to execute
        if hasattr(adapter, 'pending_operations'):
            adapter.pending_operations.append(('create', membership.user_name, membership.group_name))

        return membership

    def delete(self) -> Optional["GroupMembership"]:
        """Delete this membership from the target adapter (RT)."""
        if hasattr(self.adapter, 'pending_operations'):
            self.adapter.pending_operations.append(('delete', self.user_name, self.group_name))

        return self
