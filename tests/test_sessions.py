import pytest

from chatrelay.core.errors import (
    AddressBanned,
    CapacityExceeded,
    DuplicateConnection,
    NameBanned,
    NameInUse,
    NotFoundError,
    ValidationError,
)
from chatrelay.core.messages import MessageLog
from chatrelay.core.rooms import DEFAULT_ROOMS, RoomRegistry
from chatrelay.core.sessions import BanList, Profile, SessionStore

T0 = 1_700_000_000_000


@pytest.fixture
def clock():
    return {"now": T0}


@pytest.fixture
def store(clock):
    log = MessageLog([r.room_id for r in DEFAULT_ROOMS])
    registry = RoomRegistry(log)
    bans = BanList(now=lambda: clock["now"])
    return SessionStore(registry, bans, max_users=2, now=lambda: clock["now"])


def profile(name, gender="Female", country="US"):
    return Profile.validate(name, gender, country)


def test_profile_validation():
    p = Profile.validate("  Alice  ", "Female", "us")
    assert p.name == "Alice"
    assert p.country.code == "US"

    for name, gender, country in [
        ("A", "Female", "US"),
        ("x" * 21, "Female", "US"),
        ("Alice", "Other", "US"),
        ("Alice", "Female", "ZZ"),
        (None, "Female", "US"),
    ]:
        with pytest.raises(ValidationError):
            Profile.validate(name, gender, country)


def test_create_and_lookup(store):
    s = store.create_session("c1", profile("Alice"), "10.0.0.1", "global")
    assert store.get("c1") is s
    assert s.room_id == "global"
    assert "c1" in store.registry.members_of("global")
    assert store.find_by_name("ALICE") is s
    assert store.find_by_address("10.0.0.1") == [s]


def test_duplicate_connection_rejected(store):
    store.create_session("c1", profile("Alice"), "10.0.0.1", "global")
    with pytest.raises(DuplicateConnection):
        store.create_session("c1", profile("Bob", "Male"), "10.0.0.1", "global")


def test_duplicate_display_name_rejected_case_insensitive(store):
    store.create_session("c1", profile("Alice"), "10.0.0.1", "global")
    with pytest.raises(NameInUse):
        store.create_session("c2", profile("alice"), "10.0.0.2", "global")
    assert len(store) == 1


def test_bans_checked_before_creation(store):
    store.bans.ban_name("Mallory")
    store.bans.ban_address("10.6.6.6")
    with pytest.raises(NameBanned):
        store.create_session("c1", profile("mallory"), "10.0.0.1", "global")
    with pytest.raises(AddressBanned):
        store.create_session("c2", profile("Eve"), "10.6.6.6", "global")
    assert len(store) == 0
    assert sum(store.registry.counts().values()) == 0


def test_capacity_counts_only_real_sessions(store):
    store.create_session("bot", profile("Sarah"), "synthetic", "global", synthetic=True)
    store.create_session("c1", profile("Alice"), "10.0.0.1", "global")
    store.create_session("c2", profile("Bob", "Male"), "10.0.0.2", "global")
    with pytest.raises(CapacityExceeded):
        store.create_session("c3", profile("Carol"), "10.0.0.3", "global")


def test_remove_detaches_and_later_lookups_fail(store):
    s = store.create_session("c1", profile("Alice"), "10.0.0.1", "global")
    removed = store.remove("c1")
    assert removed is s
    assert s.online is False
    assert "c1" not in store.registry.members_of("global")
    with pytest.raises(NotFoundError):
        store.get("c1")
    with pytest.raises(NotFoundError):
        store.remove("c1")
    assert store.find_by_name("Alice") is None


def test_touch_updates_last_activity(store, clock):
    s = store.create_session("c1", profile("Alice"), "10.0.0.1", "global")
    clock["now"] += 5_000
    store.touch("c1")
    assert s.last_activity_ms == T0 + 5_000


def test_mute_expires_lazily(store, clock):
    s = store.create_session("c1", profile("Carol"), "10.0.0.1", "global")
    store.mute("c1", T0 + 5_000)

    clock["now"] = T0 + 4_999
    assert store.check_mute(s) is True
    assert s.muted is True

    clock["now"] = T0 + 5_000
    assert store.check_mute(s) is False
    assert s.muted is False
    assert s.mute_until_ms == 0


def test_list_online_with_predicate(store):
    store.create_session("c1", profile("Alice"), "10.0.0.1", "global")
    store.create_session("c2", profile("Bob", "Male"), "10.0.0.2", "male_male")
    males = store.list_online(lambda s: s.gender == "Male")
    assert [s.name for s in males] == ["Bob"]
    assert len(store.list_online()) == 2


def test_ban_records_keep_reason_and_time(store, clock):
    record = store.bans.ban_address("10.6.6.6", "spam")
    assert record.as_dict() == {"kind": "address", "value": "10.6.6.6", "reason": "spam", "created": T0}
    assert store.bans.records() == [record]
