"""Pytest shared fixtures: an in-memory RT, fake web services and a config factory."""

from typing import Dict, List, Optional

import pytest

from config import SyncConfig
from rt_store import MemoryRTStore
from user_cache import UserCache
from user_reconciler import UserReconciler


class FakeGroupsWebService:
    """Stands in for GroupsWebService; groups and members are plain dicts."""

    def __init__(self, groups: Optional[List[Dict]] = None, members: Optional[Dict[str, List[str]]] = None):
        self.groups = groups or []
        self.members = members or {}
        self.searches: List[str] = []

    def search(self, path: str):
        self.searches.append(path)
        return list(self.groups)

    def effective_members(self, group_id: str):
        self.searches.append(f"group/{group_id}/effective_member")
        entries = []
        for member in self.members.get(group_id, []):
            if isinstance(member, dict):
                entries.append(member)
            else:
                entries.append({"type": "uwnetid", "id": member})
        return entries


class FakePersonWebService:
    """Stands in for PersonWebService, counting lookups per subject."""

    def __init__(self, persons: Optional[Dict[str, Dict]] = None):
        self.persons = persons or {}
        self.lookups: List[str] = []

    def lookup(self, subject_id: str):
        self.lookups.append(subject_id)
        return self.persons.get(subject_id)

    def search(self, path: str):
        return list(self.persons.values())


def person(netid: str, display_name: str = "", email: Optional[str] = None, **extra) -> Dict:
    record = {"UWNetID": netid, "DisplayName": display_name or netid.title()}
    if email is not None:
        record["EmailAddresses"] = [email]
    record.update(extra)
    return record


@pytest.fixture
def store():
    return MemoryRTStore()


@pytest.fixture
def make_config():
    def _make(**overrides):
        settings = dict(
            gws_host="https://gws.test/group_sws/v3",
            pws_host="https://pws.test/identity/v2",
            group_stem="uw_rt",
            dry_run=False,
        )
        settings.update(overrides)
        return SyncConfig(**settings)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def user_cache():
    return UserCache()


@pytest.fixture
def user_reconciler(config, store, user_cache):
    return UserReconciler(config, store, user_cache, pws=FakePersonWebService())


def add_users(store: MemoryRTStore, *names: str):
    return [store.create_user({"Name": n, "EmailAddress": f"{n}@uw.edu"}) for n in names]
