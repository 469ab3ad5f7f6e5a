import json

import pytest

from syncstream.services.dispatcher import ConnectionDispatcher


def join_frame(room_id, pid, name=None, create=False):
    return {
        "type": "join_room",
        "roomId": room_id,
        "participant": {"id": pid, "name": name or pid.capitalize()},
        "create": create,
    }


async def connect_and_join(dispatcher, room_id, pid, create=False):
    context = dispatcher.connect(f"conn-{pid}")
    await dispatcher.dispatch(context, join_frame(room_id, pid, create=create))
    return context


def errors(broadcaster, connection_id):
    return broadcaster.frames(connection_id, "error")


async def test_join_or_create_sends_room_joined(dispatcher, broadcaster):
    context = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)

    assert context.bound
    assert (context.room_id, context.participant_id) == ("AB3XY9", "alice")
    frame = broadcaster.frames("conn-alice", "room_joined")[0]
    assert frame["isHost"] is True
    assert frame["room"]["id"] == "AB3XY9"
    assert frame["room"]["hostId"] == "alice"
    assert [p["id"] for p in frame["participants"]] == ["alice"]
    assert [m["text"] for m in frame["messages"]] == ["Alice joined the room"]


async def test_room_code_is_normalised(dispatcher, broadcaster):
    await connect_and_join(dispatcher, "ab3xy9", "alice", create=True)
    assert broadcaster.frames("conn-alice", "room_joined")[0]["room"]["id"] == "AB3XY9"


async def test_join_without_create_needs_existing_room(dispatcher, broadcaster):
    context = await connect_and_join(dispatcher, "AB3XY9", "alice")

    assert not context.bound
    assert errors(broadcaster, "conn-alice")[0]["error"] == "ROOM_001"


async def test_create_with_invalid_code(dispatcher, broadcaster):
    context = await connect_and_join(dispatcher, "BAD-01", "alice", create=True)

    assert not context.bound
    assert errors(broadcaster, "conn-alice")[0]["error"] == "ROOM_009"


async def test_events_before_join_are_rejected(dispatcher, broadcaster):
    context = dispatcher.connect("conn-x")

    await dispatcher.dispatch(context, {"type": "report_play", "time": 3})
    await dispatcher.dispatch(context, {"type": "chat_message", "text": "hi"})

    assert [e["error"] for e in errors(broadcaster, "conn-x")] == ["ROOM_007", "ROOM_007"]


@pytest.mark.parametrize("frame, code", [
    ("not json", "WS_002"),
    ("[1, 2]", "WS_002"),
    ({"type": "dance"}, "WS_002"),
    ({"no": "type"}, "WS_002"),
    ({"type": "report_seek"}, "VAL_003"),
    ({"type": "report_seek", "time": -1}, "VAL_002"),
    ({"type": "change_media", "mediaType": "vhs", "mediaUrl": "x"}, "VAL_002"),
    ({"type": "join_room", "roomId": "AB3XY9", "participant": {"id": "a", "name": ""}}, "VAL_002"),
    ({"type": "join_room", "roomId": "AB3XY9", "participant": {"id": "a", "name": "n" * 21}}, "VAL_002"),
])
async def test_malformed_frames_get_error_frame(dispatcher, broadcaster, frame, code):
    context = dispatcher.connect("conn-x")

    await dispatcher.dispatch(context, frame)

    frames = broadcaster.frames("conn-x")
    assert len(frames) == 1
    assert frames[0]["type"] == "error"
    assert frames[0]["error"] == code


async def test_missing_field_is_named(dispatcher, broadcaster):
    context = dispatcher.connect("conn-x")
    await dispatcher.dispatch(context, {"type": "chat_message"})

    error = errors(broadcaster, "conn-x")[0]
    assert error["error"] == "VAL_003"
    assert error["details"] == {"field": "text"}


async def test_raw_json_text_is_accepted(dispatcher, broadcaster):
    context = dispatcher.connect("conn-x")
    await dispatcher.dispatch(context, json.dumps({"type": "ping"}))
    assert broadcaster.frames("conn-x") == [{"type": "pong"}]


async def test_playback_routed_and_sender_excluded(dispatcher, broadcaster):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    await connect_and_join(dispatcher, "AB3XY9", "bob")
    broadcaster.clear()

    await dispatcher.dispatch(alice, {"type": "report_play", "time": 12.5})

    assert broadcaster.frames("conn-alice") == []
    frame = broadcaster.frames("conn-bob", "playback_state")[0]
    assert frame["action"] == "play"
    assert frame["currentTime"] == 12.5


async def test_request_sync_answers_requester(dispatcher, broadcaster):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    bob = await connect_and_join(dispatcher, "AB3XY9", "bob")
    await dispatcher.dispatch(alice, {"type": "change_media", "mediaType": "youtube", "mediaUrl": "abc"})
    broadcaster.clear()

    await dispatcher.dispatch(bob, {"type": "request_sync"})

    state = broadcaster.frames("conn-bob", "sync_state")[0]
    assert state["isPlaying"] is False
    assert state["currentTime"] == 0.0
    assert state["mediaType"] == "youtube"
    assert state["mediaUrl"] == "abc"
    assert broadcaster.frames("conn-alice", "sync_requested") == [
        {"type": "sync_requested", "participantId": "bob"}
    ]


async def test_chat_errors_reach_only_sender(dispatcher, broadcaster):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    await connect_and_join(dispatcher, "AB3XY9", "bob")
    broadcaster.clear()

    await dispatcher.dispatch(alice, {"type": "chat_message", "text": "   "})
    await dispatcher.dispatch(alice, {"type": "chat_message", "text": "y" * 501})

    assert [e["error"] for e in errors(broadcaster, "conn-alice")] == ["CHAT_001", "CHAT_002"]
    assert broadcaster.frames("conn-bob") == []


async def test_typing_indicators(dispatcher, broadcaster):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    await connect_and_join(dispatcher, "AB3XY9", "bob")
    broadcaster.clear()

    await dispatcher.dispatch(alice, {"type": "typing_start"})
    await dispatcher.dispatch(alice, {"type": "typing_stop"})

    assert broadcaster.frames("conn-alice") == []
    assert broadcaster.frames("conn-bob") == [
        {"type": "user_typing", "participantId": "alice", "name": "Alice"},
        {"type": "user_stopped_typing", "participantId": "alice"},
    ]


async def test_disconnect_converges_with_leave(dispatcher, broadcaster, membership, lifecycle):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    bob = await connect_and_join(dispatcher, "AB3XY9", "bob")

    await dispatcher.dispatch(bob, {"type": "leave_room"})
    await dispatcher.disconnect(bob)

    assert not bob.bound
    assert [p.id for p in await membership.list_participants("AB3XY9")] == ["alice"]
    assert len(broadcaster.frames("conn-alice", "participant_left")) == 1

    await dispatcher.disconnect(alice)
    assert await lifecycle.exists("AB3XY9") is False


async def test_leave_when_not_joined(dispatcher, broadcaster):
    context = dispatcher.connect("conn-x")
    await dispatcher.dispatch(context, {"type": "leave_room"})
    assert errors(broadcaster, "conn-x")[0]["error"] == "ROOM_007"


async def test_join_another_room_leaves_previous(dispatcher, broadcaster, membership, lifecycle):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    await connect_and_join(dispatcher, "AB3XY9", "bob")

    await dispatcher.dispatch(alice, join_frame("ZZ9QQ2", "alice", create=True))

    assert alice.room_id == "ZZ9QQ2"
    assert [p.id for p in await membership.list_participants("AB3XY9")] == ["bob"]
    assert await membership.is_host("AB3XY9", "bob")
    assert "conn-alice" not in broadcaster.rooms["AB3XY9"]


async def test_rejoin_same_room_on_same_connection_keeps_room(dispatcher, broadcaster, lifecycle):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)

    await dispatcher.dispatch(alice, join_frame("AB3XY9", "alice"))

    assert await lifecycle.exists("AB3XY9")
    assert len(broadcaster.frames("conn-alice", "room_joined")) == 2


async def test_reconnect_supersedes_old_connection(dispatcher, broadcaster, membership):
    old = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    await connect_and_join(dispatcher, "AB3XY9", "bob")
    new = dispatcher.connect("conn-alice-2")
    await dispatcher.dispatch(new, join_frame("AB3XY9", "alice"))

    await dispatcher.disconnect(old)

    participants = await membership.list_participants("AB3XY9")
    assert [p.id for p in participants] == ["alice", "bob"]
    assert participants[0].connection_id == "conn-alice-2"
    assert await membership.is_host("AB3XY9", "alice")


async def test_stale_connection_is_unbound_on_next_event(dispatcher, broadcaster):
    old = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    new = dispatcher.connect("conn-alice-2")
    await dispatcher.dispatch(new, join_frame("AB3XY9", "alice"))
    broadcaster.clear()

    await dispatcher.dispatch(old, {"type": "report_play", "time": 1})

    assert not old.bound
    assert errors(broadcaster, "conn-alice")[0]["error"] == "ROOM_007"


async def test_host_only_policy(lifecycle, membership, playback, chat, broadcaster):
    strict = ConnectionDispatcher(lifecycle, membership, playback, chat, broadcaster, host_only_playback=True)
    alice = await connect_and_join(strict, "AB3XY9", "alice", create=True)
    bob = await connect_and_join(strict, "AB3XY9", "bob")
    broadcaster.clear()

    await strict.dispatch(bob, {"type": "report_pause", "time": 4})
    await strict.dispatch(alice, {"type": "report_pause", "time": 4})

    assert errors(broadcaster, "conn-bob")[0]["error"] == "ROOM_005"
    assert len(broadcaster.frames("conn-bob", "playback_state")) == 1


async def test_unexpected_error_becomes_generic_error_frame(dispatcher, broadcaster, monkeypatch):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    broadcaster.clear()

    async def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(dispatcher.playback, "report_seek", boom)
    await dispatcher.dispatch(alice, {"type": "report_seek", "time": 3})

    assert errors(broadcaster, "conn-alice")[0]["error"] == "GEN_001"
    assert alice.bound


async def test_host_disconnect_scenario(dispatcher, broadcaster, lifecycle):
    a = await connect_and_join(dispatcher, "AB3XY9", "a", create=True)
    await connect_and_join(dispatcher, "AB3XY9", "b")
    await connect_and_join(dispatcher, "AB3XY9", "c")
    broadcaster.clear()

    await dispatcher.disconnect(a)

    for conn in ("conn-b", "conn-c"):
        assert broadcaster.frames(conn, "host_changed") == [{"type": "host_changed", "hostId": "b", "hostName": "B"}]
    room = await lifecycle.get("AB3XY9")
    assert room is not None
    assert room.host_id == "b"


async def test_late_joiner_receives_last_fifty_messages(dispatcher, broadcaster):
    a = await connect_and_join(dispatcher, "AB3XY9", "a", create=True)
    for i in range(100):
        await dispatcher.dispatch(a, {"type": "chat_message", "text": f"message {i}"})

    await connect_and_join(dispatcher, "AB3XY9", "b")

    # The window is read after the join notice is appended.
    messages = broadcaster.frames("conn-b", "room_joined")[0]["messages"]
    assert len(messages) == 50
    assert [m["text"] for m in messages] == [f"message {i}" for i in range(51, 100)] + ["B joined the room"]


async def test_share_state_to_unknown_target_is_rejected(dispatcher, broadcaster):
    alice = await connect_and_join(dispatcher, "AB3XY9", "alice", create=True)
    broadcaster.clear()

    await dispatcher.dispatch(alice, {"type": "share_state", "time": 3.0, "playing": True, "targetId": "ghost"})

    error = errors(broadcaster, "conn-alice")[0]
    assert error["error"] == "VAL_002"
    assert error["details"]["field"] == "targetId"
