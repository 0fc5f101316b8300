import json
import logging

import pytest

import sync
from conftest import FakeGroupsWebService, FakePersonWebService, add_users, person
from rt_store import MemoryRTStore
from sync import main, run_group_search, run_import


GROUPS = [
    {"id": "uw_rt_staff", "name": "Staff", "regid": "1111"},
    {"id": "uw_rt_admins", "name": "Admins", "regid": "2222"},
    {"id": "uw_other_group", "name": "Elsewhere", "regid": "3333"},
]


def test_group_search_applies_stem_and_sync_groups(make_config):
    gws = FakeGroupsWebService(GROUPS)

    all_in_stem = run_group_search(make_config(), gws)
    only_staff = run_group_search(make_config(sync_groups={"uw_rt_staff"}), gws)

    assert [g["id"] for g in all_in_stem] == ["uw_rt_staff", "uw_rt_admins"]
    assert [g["id"] for g in only_staff] == ["uw_rt_staff"]


def test_group_search_not_configured(make_config, caplog):
    gws = FakeGroupsWebService(GROUPS)
    assert run_group_search(make_config(group_stem=""), gws) == []
    assert gws.searches == []
    assert "configuration not set" in caplog.text


def test_explicit_group_search_is_used(make_config):
    gws = FakeGroupsWebService(GROUPS)
    run_group_search(make_config(group_stem="", group_search="search?name=uw_rt_*"), gws)
    assert gws.searches == ["search?name=uw_rt_*"]


def test_failed_search_completes_with_nothing_to_do(config):
    store = MemoryRTStore()
    summary = run_import(config, store, FakeGroupsWebService([]))

    assert summary.groups_processed == 0
    assert store.mutations == []


def test_one_failing_group_does_not_stop_the_run(config, monkeypatch):
    store = MemoryRTStore()
    add_users(store, "a", "b")
    gws = FakeGroupsWebService(GROUPS[:2], {"uw_rt_staff": ["a"], "uw_rt_admins": ["b"]})

    original = gws.effective_members

    def flaky(group_id):
        if group_id == "uw_rt_staff":
            raise RuntimeError("GWS hiccup")
        return original(group_id)

    monkeypatch.setattr(gws, "effective_members", flaky)

    summary = run_import(config, store, gws)

    assert summary.groups_processed == 2
    assert summary.groups_failed == 1
    assert store.member_names(store.load_group("uw_rt_admins")) == ["b"]


def test_user_search_imports_before_groups(make_config):
    store = MemoryRTStore()
    pws = FakePersonWebService({
        "jdoe": person("jdoe", "Jane Doe", "jane@uw.edu"),
        "12345": person("12345"),
    })
    gws = FakeGroupsWebService(GROUPS[:1], {"uw_rt_staff": ["jdoe"]})

    summary = run_import(make_config(user_search="person.json?department=UW-IT"), store, gws, pws)

    assert summary.users.processed == 2
    assert summary.users.resolved == 1
    assert summary.users.skipped == 1
    assert store.member_names(store.load_group("uw_rt_staff")) == ["jdoe"]


def test_update_only_never_creates(make_config):
    store = MemoryRTStore()
    pws = FakePersonWebService({"jdoe": person("jdoe")})
    gws = FakeGroupsWebService(GROUPS[:1], {"uw_rt_staff": ["jdoe"]})
    config = make_config(update_only=True, import_group_members=True, user_search="person.json")

    summary = run_import(config, store, gws, pws)

    assert store.users == {} and store.groups == {}
    assert summary.groups_skipped == 1


def test_main_rejects_missing_settings(monkeypatch, tmp_path):
    for var in ("GWS_HOST", "PWS_HOST", "PWS_USER_SEARCH", "GWS_IMPORT_GROUP_MEMBERS"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)

    assert main([]) == 1


def test_main_rejects_bad_mapping(monkeypatch, tmp_path):
    monkeypatch.setenv("GWS_HOST", "https://gws.test")
    monkeypatch.setenv("GWS_USER_MAPPING", "{not json")
    monkeypatch.chdir(tmp_path)

    assert main([]) == 1


def test_main_saves_store_only_when_importing(monkeypatch, tmp_path):
    monkeypatch.setenv("GWS_HOST", "https://gws.test")
    monkeypatch.setenv("GWS_GROUP_STEM", "uw_rt")
    for var in ("PWS_HOST", "PWS_USER_SEARCH", "GWS_IMPORT_GROUP_MEMBERS", "SYNC_GROUPS",
                "GWS_USER_MAPPING", "GWS_GROUP_MAPPING", "SYNC_DRY_RUN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)

    fake = FakeGroupsWebService(GROUPS[:1], {"uw_rt_staff": []})
    fake.close = lambda: None
    monkeypatch.setattr(sync.GroupsWebService, "from_config", classmethod(lambda cls, config: fake))

    store_file = tmp_path / "rt.json"

    assert main(["--store", str(store_file)]) == 0
    assert not store_file.exists()

    assert main(["--store", str(store_file), "--import"]) == 0
    data = json.loads(store_file.read_text())
    assert [g["name"] for g in data["groups"]] == ["uw_rt_staff"]


def test_dry_run_flag_overrides_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("GWS_HOST", "https://gws.test")
    monkeypatch.setenv("GWS_GROUP_STEM", "uw_rt")
    monkeypatch.setenv("SYNC_DRY_RUN", "false")
    for var in ("PWS_HOST", "PWS_USER_SEARCH", "GWS_IMPORT_GROUP_MEMBERS", "SYNC_GROUPS",
                "GWS_USER_MAPPING", "GWS_GROUP_MAPPING"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)

    fake = FakeGroupsWebService(GROUPS[:1], {"uw_rt_staff": []})
    fake.close = lambda: None
    monkeypatch.setattr(sync.GroupsWebService, "from_config", classmethod(lambda cls, config: fake))

    store_file = tmp_path / "rt.json"

    assert main(["--store", str(store_file), "--dry-run"]) == 0
    assert not store_file.exists()

    with pytest.raises(SystemExit):
        main(["--import", "--dry-run"])
