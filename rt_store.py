"""
RT user/group persistence used by the reconcilers.

RTStore is the interface the importer needs from RT. MemoryRTStore keeps
everything in process; JsonFileRTStore persists it to a JSON file between
runs. Every rejected write raises RTStoreError.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from operator import attrgetter
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple


logger = logging.getLogger(__name__)


class RTStoreError(Exception):
    """A write was rejected by the store."""


@dataclass
class LocalUser:
    id: int
    name: str
    email_address: str = ""
    real_name: str = ""
    organization: str = ""
    work_phone: str = ""
    mobile_phone: str = ""
    home_phone: str = ""
    privileged: bool = False
    disabled: bool = False
    custom_fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class LocalGroup:
    id: int
    name: str
    description: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    member_ids: Set[int] = field(default_factory=set)


@dataclass
class CustomField:
    id: int
    name: str
    values: List[str] = field(default_factory=list)


FieldAccessor = Tuple[str, Callable[[Any], Any]]

# RT field name -> how to read it from the entity, in display order
USER_FIELD_ACCESSORS: Sequence[FieldAccessor] = (
    ("Name", attrgetter("name")),
    ("EmailAddress", attrgetter("email_address")),
    ("RealName", attrgetter("real_name")),
    ("Organization", attrgetter("organization")),
    ("WorkPhone", attrgetter("work_phone")),
    ("MobilePhone", attrgetter("mobile_phone")),
    ("HomePhone", attrgetter("home_phone")),
)

GROUP_FIELD_ACCESSORS: Sequence[FieldAccessor] = (
    ("Name", attrgetter("name")),
    ("Description", attrgetter("description")),
)

USER_FIELD_ATTRS = {
    "Name": "name",
    "EmailAddress": "email_address",
    "RealName": "real_name",
    "Organization": "organization",
    "WorkPhone": "work_phone",
    "MobilePhone": "mobile_phone",
    "HomePhone": "home_phone",
}

GROUP_FIELD_ATTRS = {
    "Name": "name",
    "Description": "description",
}


class RTStore(ABC):
    """What the importer needs from RT's user and group tables."""

    @abstractmethod
    def load_user(self, name: str) -> Optional[LocalUser]: ...

    @abstractmethod
    def load_user_by_email(self, email: str) -> Optional[LocalUser]: ...

    @abstractmethod
    def create_user(self, fields: Dict[str, str], privileged: bool = False) -> LocalUser: ...

    @abstractmethod
    def update_user(self, user: LocalUser, fields: Dict[str, str]) -> List[str]:
        """Apply the fields, returning one message per changed field."""

    @abstractmethod
    def load_group(self, name: str) -> Optional[LocalGroup]: ...

    @abstractmethod
    def find_group_by_attribute(self, attribute: str) -> Optional[LocalGroup]: ...

    @abstractmethod
    def create_group(self, fields: Dict[str, str]) -> LocalGroup: ...

    @abstractmethod
    def update_group(self, group: LocalGroup, fields: Dict[str, str]) -> List[str]: ...

    @abstractmethod
    def set_group_name(self, group: LocalGroup, name: str): ...

    @abstractmethod
    def set_attribute(self, group: LocalGroup, name: str, content: Any = 1): ...

    @abstractmethod
    def first_attribute(self, group: LocalGroup, name: str) -> Any: ...

    @abstractmethod
    def attribute_names(self, group: LocalGroup) -> List[str]: ...

    @abstractmethod
    def has_member(self, group: LocalGroup, user: LocalUser) -> bool: ...

    @abstractmethod
    def add_member(self, group: LocalGroup, user: LocalUser): ...

    @abstractmethod
    def delete_member(self, group: LocalGroup, user: LocalUser): ...

    @abstractmethod
    def member_names(self, group: LocalGroup) -> List[str]:
        """Names of the direct user members, disabled users included."""

    @abstractmethod
    def load_custom_field(self, name: str) -> Optional[CustomField]: ...

    @abstractmethod
    def custom_field_has_value(self, cf: CustomField, value: str) -> bool: ...

    @abstractmethod
    def add_custom_field_value(self, cf: CustomField, value: str): ...

    @abstractmethod
    def first_custom_field_value(self, user: LocalUser, cf_name: str) -> Optional[str]: ...

    @abstractmethod
    def add_object_custom_field_value(self, user: LocalUser, cf_name: str, value: str): ...


class MemoryRTStore(RTStore):
    """
    An RT store held entirely in memory.

    Every successful write is appended to ``mutations`` as a tuple, which
    makes it easy to see what a run changed.
    """

    def __init__(self):
        self.users: Dict[int, LocalUser] = {}
        self.groups: Dict[int, LocalGroup] = {}
        self.custom_fields: Dict[str, CustomField] = {}
        self.mutations: List[tuple] = []
        self._next_id = 1

    def _new_id(self) -> int:
        new_id = self._next_id
        self._next_id += 1
        return new_id

    def _record(self, *mutation):
        self.mutations.append(mutation)

    # Users

    def load_user(self, name: str) -> Optional[LocalUser]:
        if not name:
            return None
        return next((u for u in self.users.values() if u.name == name), None)

    def load_user_by_email(self, email: str) -> Optional[LocalUser]:
        if not email:
            return None
        email = email.lower()
        return next((u for u in self.users.values() if u.email_address.lower() == email), None)

    def _apply_fields(self, entity, attrs: Dict[str, str], fields: Dict[str, str]) -> List[str]:
        messages = []
        for rt_field, value in sorted(fields.items()):
            attr = attrs.get(rt_field)
            if attr is None:
                logger.warning(f"Ignoring unknown field {rt_field} for {entity.name}")
                continue
            old = getattr(entity, attr)
            if old == value:
                continue
            setattr(entity, attr, value)
            messages.append(f"{rt_field} changed from '{old}' to '{value}'")
        return messages

    def create_user(self, fields: Dict[str, str], privileged: bool = False) -> LocalUser:
        name = fields.get("Name", "")
        if not name:
            raise RTStoreError("Must specify 'Name' attribute")
        if self.load_user(name):
            raise RTStoreError(f"Name in use: {name}")
        email = fields.get("EmailAddress", "")
        if email and self.load_user_by_email(email):
            raise RTStoreError(f"Email address in use: {email}")

        user = LocalUser(id=self._new_id(), name=name, privileged=privileged)
        self._apply_fields(user, USER_FIELD_ATTRS, fields)
        self.users[user.id] = user
        self._record("create_user", name)
        return user

    def update_user(self, user: LocalUser, fields: Dict[str, str]) -> List[str]:
        new_name = fields.get("Name")
        if new_name and new_name != user.name and self.load_user(new_name):
            raise RTStoreError(f"Name in use: {new_name}")
        messages = self._apply_fields(user, USER_FIELD_ATTRS, fields)
        if messages:
            self._record("update_user", user.name)
        return messages

    # Groups

    def load_group(self, name: str) -> Optional[LocalGroup]:
        if not name:
            return None
        return next((g for g in self.groups.values() if g.name == name), None)

    def find_group_by_attribute(self, attribute: str) -> Optional[LocalGroup]:
        for group_id in sorted(self.groups):
            if attribute in self.groups[group_id].attributes:
                return self.groups[group_id]
        return None

    def create_group(self, fields: Dict[str, str]) -> LocalGroup:
        name = fields.get("Name", "")
        if not name:
            raise RTStoreError("Must specify 'Name' attribute")
        if self.load_group(name):
            raise RTStoreError(f"Group name '{name}' is already in use")
        group = LocalGroup(id=self._new_id(), name=name)
        self._apply_fields(group, GROUP_FIELD_ATTRS, fields)
        self.groups[group.id] = group
        self._record("create_group", name)
        return group

    def update_group(self, group: LocalGroup, fields: Dict[str, str]) -> List[str]:
        new_name = fields.get("Name")
        if new_name and new_name != group.name and self.load_group(new_name):
            raise RTStoreError(f"Group name '{new_name}' is already in use")
        messages = self._apply_fields(group, GROUP_FIELD_ATTRS, fields)
        if messages:
            self._record("update_group", group.name)
        return messages

    def set_group_name(self, group: LocalGroup, name: str):
        if not name:
            raise RTStoreError("Group name can't be empty")
        existing = self.load_group(name)
        if existing and existing.id != group.id:
            raise RTStoreError(f"Group name '{name}' is already in use")
        old = group.name
        group.name = name
        self._record("set_group_name", old, name)

    def set_attribute(self, group: LocalGroup, name: str, content: Any = 1):
        group.attributes[name] = content
        self._record("set_attribute", group.name, name)

    def first_attribute(self, group: LocalGroup, name: str) -> Any:
        return group.attributes.get(name)

    def attribute_names(self, group: LocalGroup) -> List[str]:
        return sorted(group.attributes)

    # Membership

    def has_member(self, group: LocalGroup, user: LocalUser) -> bool:
        return user.id in group.member_ids

    def add_member(self, group: LocalGroup, user: LocalUser):
        if user.id not in self.users:
            raise RTStoreError(f"Couldn't find user {user.name}")
        if user.id in group.member_ids:
            raise RTStoreError(f"{user.name} is already a member of {group.name}")
        group.member_ids.add(user.id)
        self._record("add_member", group.name, user.name)

    def delete_member(self, group: LocalGroup, user: LocalUser):
        if user.id not in group.member_ids:
            raise RTStoreError(f"{user.name} is not a member of {group.name}")
        group.member_ids.discard(user.id)
        self._record("delete_member", group.name, user.name)

    def member_names(self, group: LocalGroup) -> List[str]:
        return sorted(self.users[i].name for i in group.member_ids if i in self.users)

    # Custom fields

    def load_custom_field(self, name: str) -> Optional[CustomField]:
        return self.custom_fields.get(name)

    def add_custom_field(self, name: str, values: Sequence[str] = ()) -> CustomField:
        cf = CustomField(id=self._new_id(), name=name, values=list(values))
        self.custom_fields[name] = cf
        return cf

    def custom_field_has_value(self, cf: CustomField, value: str) -> bool:
        return value in cf.values

    def add_custom_field_value(self, cf: CustomField, value: str):
        if value in cf.values:
            raise RTStoreError(f"'{value}' is already a value of {cf.name}")
        cf.values.append(value)
        self._record("add_custom_field_value", cf.name, value)

    def first_custom_field_value(self, user: LocalUser, cf_name: str) -> Optional[str]:
        return user.custom_fields.get(cf_name)

    def add_object_custom_field_value(self, user: LocalUser, cf_name: str, value: str):
        if cf_name not in self.custom_fields:
            raise RTStoreError(f"Custom field {cf_name} not found")
        user.custom_fields[cf_name] = value
        self._record("add_object_custom_field_value", user.name, cf_name, value)


class JsonFileRTStore(MemoryRTStore):
    """A MemoryRTStore loaded from and saved back to a JSON file."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        if os.path.exists(path):
            self.load()
        else:
            logger.info(f"Store file {path} does not exist yet, starting empty")

    def load(self):
        with open(self.path, 'r') as f:
            data = json.load(f)

        for entry in data.get("users", []):
            user = LocalUser(**entry)
            self.users[user.id] = user
        for entry in data.get("groups", []):
            entry = dict(entry, member_ids=set(entry.get("member_ids", [])))
            group = LocalGroup(**entry)
            self.groups[group.id] = group
        for entry in data.get("custom_fields", []):
            cf = CustomField(**entry)
            self.custom_fields[cf.name] = cf

        known_ids = list(self.users) + list(self.groups) + [cf.id for cf in self.custom_fields.values()]
        self._next_id = max(known_ids, default=0) + 1
        logger.info(f"Loaded {len(self.users)} users and {len(self.groups)} groups from {self.path}")

    def save(self):
        data = {
            "users": [asdict(u) for u in self.users.values()],
            "groups": [dict(asdict(g), member_ids=sorted(g.member_ids)) for g in self.groups.values()],
            "custom_fields": [asdict(cf) for cf in self.custom_fields.values()],
        }
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)
        logger.info(f"Saved {len(self.users)} users and {len(self.groups)} groups to {self.path}")
