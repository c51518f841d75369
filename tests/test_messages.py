import pytest

from chatrelay.core.messages import DirectMessage, DirectMessageRing, Message, MessageLog

ROOMS = ["global", "male_female"]


def mk(n, room="global", ts=None):
    return Message(
        message_id=f"m{n}",
        room_id=room,
        author_id="a",
        author_name="Alice",
        gender="Female",
        country={"code": "US", "name": "United States", "flag": ""},
        body=f"body {n}",
        created_ms=n if ts is None else ts,
    )


@pytest.fixture
def log():
    return MessageLog(ROOMS, capacity=30)


def test_length_never_exceeds_capacity(log):
    for n in range(100):
        log.append("global", mk(n))
        assert log.length("global") <= 30
    assert log.length("global") == 30
    assert log.tail("global", 1)[0].message_id == "m99"


def test_full_room_evicts_oldest_on_append(log):
    for n in range(30):
        log.append("global", mk(n))

    evicted = log.append("global", mk(30))

    assert evicted.message_id == "m0"
    assert log.length("global") == 30
    ids = [m.message_id for m in log.tail("global", 30)]
    assert ids[0] == "m1"
    assert ids[-1] == "m30"


def test_tail_is_ordered_and_bounded(log):
    for n in range(5):
        log.append("global", mk(n))
    assert [m.message_id for m in log.tail("global", 3)] == ["m2", "m3", "m4"]
    assert len(log.tail("global", 50)) == 5
    assert log.tail("global", 0) == []
    assert log.tail("male_female", 10) == []


def test_delete_by_id_any_position(log):
    for n in range(4):
        log.append("global", mk(n))
    assert log.delete_by_id("global", "m2") is True
    assert [m.message_id for m in log.tail("global", 10)] == ["m0", "m1", "m3"]
    assert log.delete_by_id("global", "m2") is False
    assert log.delete_by_id("male_female", "m1") is False


def test_purge_older_than_keeps_entries_at_cutoff(log):
    log.append("global", mk(1, ts=1_000))
    log.append("global", mk(2, ts=2_000))
    log.append("global", mk(3, ts=3_000))

    removed = log.purge_older_than("global", 2_000)

    assert removed == 1
    assert [m.message_id for m in log.tail("global", 10)] == ["m2", "m3"]


def test_unknown_room_raises(log):
    with pytest.raises(KeyError):
        log.append("lobby", mk(1))


def test_messages_are_immutable():
    message = mk(1)
    with pytest.raises(AttributeError):
        message.body = "edited"


def test_find_searches_all_rooms(log):
    log.append("male_female", mk(7, room="male_female"))
    assert log.find("m7").room_id == "male_female"
    assert log.find("nope") is None


def test_direct_message_ring_is_bounded():
    ring = DirectMessageRing(capacity=3)
    for n in range(5):
        ring.record(DirectMessage(f"pm{n}", "a", "b", "hi", n))
    assert len(ring) == 3
    assert [dm.message_id for dm in ring.recent(10)] == ["pm2", "pm3", "pm4"]
    assert ring.recent(1)[0].as_dict()["id"] == "pm4"
