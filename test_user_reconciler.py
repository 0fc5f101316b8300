from config import DEFAULT_USER_MAPPING
from conftest import FakePersonWebService, add_users, person
from field_mapper import Field
from rt_store import RTStoreError
from user_cache import CacheState, UserCache, is_valid_user_name
from user_reconciler import UserReconciler


def test_user_cache_is_case_insensitive():
    cache = UserCache()
    cache.remember("abc", "abc")
    result = cache.lookup("ABC")
    assert result.state is CacheState.RESOLVED
    assert result.name == "abc"
    assert "Abc" in cache


def test_user_cache_marks_bad_names_invalid():
    cache = UserCache()
    assert cache.lookup("nobody").state is CacheState.NOT_CACHED
    assert cache.remember("123456", "123456").state is CacheState.INVALID
    assert cache.remember("blank", "").state is CacheState.INVALID
    assert cache.lookup("123456").state is CacheState.INVALID
    assert not is_valid_user_name("0042")
    assert is_valid_user_name("jdoe")


def test_creates_new_user(user_reconciler, store, user_cache):
    user = user_reconciler.resolve_user(person("jdoe", "Jane Doe", "jane@uw.edu"))

    assert user is not None
    assert user.name == "jdoe"
    assert user.real_name == "Jane Doe"
    assert user.email_address == "jane@uw.edu"
    assert user.privileged is False
    assert user_cache.lookup("jdoe").name == "jdoe"
    assert ("create_user", "jdoe") in store.mutations


def test_email_defaults_to_subject_at_domain(make_config, store, user_cache):
    reconciler = UserReconciler(make_config(email_domain="u.washington.edu"), store, user_cache)
    user = reconciler.resolve_user({"UWNetID": "jdoe"})
    assert user.email_address == "jdoe@u.washington.edu"


def test_privileged_flag_comes_from_config(make_config, store, user_cache):
    reconciler = UserReconciler(make_config(create_privileged=True), store, user_cache)
    assert reconciler.resolve_user(person("jdoe")).privileged is True


def test_numeric_name_is_never_created_or_loaded(user_reconciler, store, user_cache):
    store.create_user({"Name": "123456"})
    store.mutations.clear()

    assert user_reconciler.resolve_user({"UWNetID": "123456"}) is None
    assert store.mutations == []
    assert user_cache.lookup("123456").state is CacheState.INVALID


def test_missing_name_is_skipped(user_reconciler, store):
    assert user_reconciler.resolve_user({"DisplayName": "No Netid"}) is None
    assert store.users == {}


def test_user_is_cached_even_when_create_fails(user_reconciler, store, user_cache, monkeypatch):
    def refuse(fields, privileged=False):
        raise RTStoreError("database is read-only")

    monkeypatch.setattr(store, "create_user", refuse)

    assert user_reconciler.resolve_user(person("jdoe")) is None
    assert user_cache.lookup("jdoe").name == "jdoe"
    assert store.load_group("Imported from GWS") is None


def test_existing_user_left_alone_without_update_policy(user_reconciler, store):
    existing, = add_users(store, "jdoe")
    store.mutations.clear()

    user = user_reconciler.resolve_user(person("jdoe", "Jane Doe"))

    assert user is existing
    assert existing.real_name == ""
    assert ("update_user", "jdoe") not in store.mutations


def test_existing_user_updated_with_update_users(make_config, store, user_cache):
    add_users(store, "jdoe")
    reconciler = UserReconciler(make_config(update_users=True), store, user_cache)

    user = reconciler.resolve_user(person("jdoe", "Jane Doe", "jdoe@uw.edu"))

    assert user.real_name == "Jane Doe"
    assert ("update_user", "jdoe") in store.mutations


def test_loads_by_email_when_name_differs(user_reconciler, store):
    existing = store.create_user({"Name": "jane.doe", "EmailAddress": "jdoe@uw.edu"})
    assert user_reconciler.resolve_user(person("jdoe", email="jdoe@uw.edu")) is existing


def test_update_only_never_creates(make_config, store, user_cache):
    reconciler = UserReconciler(make_config(update_only=True), store, user_cache)
    assert reconciler.resolve_user(person("jdoe")) is None
    assert store.users == {}


def test_added_to_imported_group_once(user_reconciler, store):
    user_reconciler.resolve_user(person("jdoe"))
    user_reconciler.resolve_user(person("jdoe"))

    group = store.load_group("Imported from GWS")
    assert group is not None
    assert store.member_names(group) == ["jdoe"]
    assert [m for m in store.mutations if m[0] == "add_member"] == [("add_member", "Imported from GWS", "jdoe")]


def test_skip_autogenerated_group(make_config, store, user_cache):
    reconciler = UserReconciler(make_config(skip_autogenerated_group=True), store, user_cache)
    reconciler.resolve_user(person("jdoe"))
    assert store.load_group("Imported from GWS") is None


def test_select_custom_field_values_are_added(make_config, store, user_cache):
    cf = store.add_custom_field("Department", ["Finance"])
    mapping = dict(DEFAULT_USER_MAPPING, **{"CF.Department": Field("Department")})
    reconciler = UserReconciler(make_config(user_mapping=mapping), store, user_cache)

    reconciler.resolve_user(person("jdoe", Department="UW-IT"))
    reconciler.resolve_user(person("asmith", Department="UW-IT"))

    assert cf.values == ["Finance", "UW-IT"]
    assert store.mutations.count(("add_custom_field_value", "Department", "UW-IT")) == 1


def test_object_custom_field_set_only_when_changed(make_config, store, user_cache):
    store.add_custom_field("MailStop")
    mapping = dict(DEFAULT_USER_MAPPING, **{"UserCF.MailStop": Field("MailStop")})
    reconciler = UserReconciler(make_config(user_mapping=mapping), store, user_cache)

    user = reconciler.resolve_user(person("jdoe", MailStop="354841"))
    assert user.custom_fields == {"MailStop": "354841"}

    store.mutations.clear()
    reconciler.resolve_user(person("jdoe", MailStop="354841"))
    assert not [m for m in store.mutations if m[0] == "add_object_custom_field_value"]


def test_object_custom_field_absent_on_both_sides_is_noop(make_config, store, user_cache):
    store.add_custom_field("MailStop")
    mapping = dict(DEFAULT_USER_MAPPING, **{"UserCF.MailStop": Field("MailStop")})
    reconciler = UserReconciler(make_config(user_mapping=mapping), store, user_cache)

    user = reconciler.resolve_user(person("jdoe"))
    assert user.custom_fields == {}


def test_dry_run_computes_but_never_writes(make_config, store, user_cache):
    add_users(store, "asmith")
    store.mutations.clear()
    reconciler = UserReconciler(make_config(dry_run=True, update_users=True), store, user_cache)

    assert reconciler.resolve_user(person("jdoe")) is None
    existing = reconciler.resolve_user(person("asmith", "Alice Smith"))

    assert existing.name == "asmith"
    assert existing.real_name == ""
    assert store.mutations == []
    assert user_cache.lookup("jdoe").name == "jdoe"


def test_import_users_counts(user_reconciler):
    counts = user_reconciler.import_users([person("jdoe"), {"UWNetID": "98765"}, person("asmith")])
    assert (counts.processed, counts.resolved, counts.skipped, counts.failed) == (3, 2, 1, 0)


def test_fetch_person_falls_back_to_bare_record(config, store, user_cache):
    pws = FakePersonWebService({"jdoe": person("jdoe", "Jane Doe")})
    reconciler = UserReconciler(config, store, user_cache, pws=pws)

    assert reconciler.fetch_person("jdoe")["DisplayName"] == "Jane Doe"
    assert reconciler.fetch_person("ghost") == {"UWNetID": "ghost"}


def test_cache_subject_does_not_touch_rt(user_reconciler, store, user_cache):
    result = user_reconciler.cache_subject("JDoe")
    assert result.name == "JDoe"
    assert user_cache.lookup("jdoe").name == "JDoe"
    assert store.mutations == []
