import pytest

from syncstream.exceptions import InvalidInputException, RoomNotFoundException
from syncstream.models.room import MediaType

from conftest import join, make_participant


@pytest.fixture
async def members(lifecycle, membership, broadcaster):
    await lifecycle.create("AB3XY9", initial_host_id="alice")
    result = {}
    for pid in ("alice", "bob", "carol"):
        result[pid] = (await join(membership, broadcaster, "AB3XY9", pid)).participant
    broadcaster.clear()
    return result


async def test_play_persists_state_and_skips_sender(members, playback, lifecycle, broadcaster):
    await playback.report_play("AB3XY9", 12.5, members["alice"])

    room = await lifecycle.get("AB3XY9")
    assert room.is_playing is True
    assert room.current_time == 12.5

    assert broadcaster.frames("conn-alice") == []
    for conn in ("conn-bob", "conn-carol"):
        frame = broadcaster.frames(conn, "playback_state")[0]
        assert frame["action"] == "play"
        assert frame["isPlaying"] is True
        assert frame["currentTime"] == 12.5
        assert frame["lastSync"] == room.last_sync
        assert frame["changedBy"] == "Alice"


async def test_pause_then_seek_keeps_paused(members, playback, lifecycle, broadcaster):
    await playback.report_play("AB3XY9", 3.0, members["alice"])
    await playback.report_pause("AB3XY9", 10.0, members["bob"])
    broadcaster.clear()

    await playback.report_seek("AB3XY9", 42.0, members["carol"])

    room = await lifecycle.get("AB3XY9")
    assert room.is_playing is False
    assert room.current_time == 42.0

    frame = broadcaster.frames("conn-alice", "playback_state")[0]
    assert frame["action"] == "seek"
    assert "isPlaying" not in frame
    assert broadcaster.frames("conn-carol") == []


async def test_seek_while_playing_keeps_playing(members, playback, lifecycle):
    await playback.report_play("AB3XY9", 1.0, members["alice"])
    await playback.report_seek("AB3XY9", 90.0, members["alice"])

    room = await lifecycle.get("AB3XY9")
    assert room.is_playing is True
    assert room.current_time == 90.0


async def test_last_sync_advances_with_every_report(members, playback, lifecycle):
    await playback.report_play("AB3XY9", 1.0, members["alice"])
    first = (await lifecycle.get("AB3XY9")).last_sync
    await playback.report_pause("AB3XY9", 2.0, members["alice"])
    second = (await lifecycle.get("AB3XY9")).last_sync

    assert second > first


async def test_set_media_resets_playback(members, playback, lifecycle, broadcaster, chat):
    await playback.report_play("AB3XY9", 120.0, members["alice"])
    broadcaster.clear()

    state = await playback.set_media("AB3XY9", "youtube", "dQw4w9WgXcQ", members["bob"])

    room = await lifecycle.get("AB3XY9")
    assert room.media_type == MediaType.YOUTUBE
    assert room.media_url == "dQw4w9WgXcQ"
    assert room.is_playing is False
    assert room.current_time == 0.0
    assert state.last_sync == room.last_sync

    assert broadcaster.frames("conn-bob", "media_changed") == []
    frame = broadcaster.frames("conn-alice", "media_changed")[0]
    assert frame["mediaType"] == "youtube"
    assert frame["mediaUrl"] == "dQw4w9WgXcQ"
    assert frame["changedBy"] == "Bob"

    assert (await chat.history("AB3XY9"))[-1].text == "Bob loaded new media"


async def test_clearing_media(members, playback, lifecycle):
    await playback.set_media("AB3XY9", "url", "https://example.com/a.mp4", members["alice"])
    await playback.set_media("AB3XY9", "", "", members["alice"])

    room = await lifecycle.get("AB3XY9")
    assert room.media_type == MediaType.NONE
    assert room.media_url == ""


async def test_request_sync_returns_state_without_writing(members, playback, lifecycle):
    await playback.report_play("AB3XY9", 30.0, members["alice"])
    before = await lifecycle.get("AB3XY9")

    state = await playback.request_sync("AB3XY9")

    assert state.is_playing is True
    assert state.current_time == 30.0
    assert state.last_sync == before.last_sync
    assert (await lifecycle.get("AB3XY9")).last_sync == before.last_sync


async def test_request_sync_nudges_host(members, playback, broadcaster):
    await playback.request_sync("AB3XY9", members["bob"])

    assert broadcaster.frames("conn-alice", "sync_requested") == [
        {"type": "sync_requested", "participantId": "bob"}
    ]


async def test_host_request_sync_does_not_nudge_itself(members, playback, broadcaster):
    await playback.request_sync("AB3XY9", members["alice"])
    assert broadcaster.of_type("sync_requested") == []


async def test_share_state_to_target(members, playback, lifecycle, broadcaster):
    await playback.share_state("AB3XY9", 61.0, True, members["alice"], target_id="bob")

    room = await lifecycle.get("AB3XY9")
    assert room.is_playing is True
    assert room.current_time == 61.0

    frames = broadcaster.frames("conn-bob", "sync_state")
    assert len(frames) == 1
    assert frames[0]["currentTime"] == 61.0
    assert frames[0]["isPlaying"] is True
    assert broadcaster.frames("conn-carol", "sync_state") == []


async def test_share_state_to_room(members, playback, broadcaster):
    await playback.share_state("AB3XY9", 5.0, False, members["alice"])

    assert broadcaster.frames("conn-alice", "sync_state") == []
    assert len(broadcaster.frames("conn-bob", "sync_state")) == 1
    assert len(broadcaster.frames("conn-carol", "sync_state")) == 1


async def test_share_state_to_unknown_target(members, playback, lifecycle, broadcaster):
    before = await lifecycle.get("AB3XY9")

    with pytest.raises(InvalidInputException) as exc_info:
        await playback.share_state("AB3XY9", 61.0, True, members["alice"], target_id="mallory")

    assert exc_info.value.details == {"field": "targetId", "reason": "not a participant of this room"}
    room = await lifecycle.get("AB3XY9")
    assert (room.is_playing, room.current_time) == (before.is_playing, before.current_time)
    assert broadcaster.of_type("sync_state") == []


async def test_report_on_missing_room(playback):
    with pytest.raises(RoomNotFoundException):
        await playback.report_play("NOPE22", 1.0, make_participant("alice"))
