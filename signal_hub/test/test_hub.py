"""测试房间协议：加入、离开、断开与转发"""

import asyncio

import pytest
from websockets.protocol import State

from conftest import make_connection
from signal_hub.hub import SignalingHub
from signal_hub.protocol import (
    DeliveryFailure,
    MessageBuilder,
    MessageKind,
    RelayMessage,
    ValidationError,
)


def relay(kind, from_peer, room, target, payload):
    data = MessageBuilder.relay(kind, from_peer, room, payload, target)
    return RelayMessage.from_dict(kind, data)


def test_two_peers_join_scenario():
    async def scenario():
        hub = SignalingHub()
        a, b = make_connection(), make_connection()

        assert await hub.join(a, "r1", "A") == 1
        assert a.websocket.types() == ["room-joined"]
        joined = a.websocket.sent[0]
        assert joined["peers"] == []
        assert joined["peerCount"] == 1
        assert joined["room"] == "r1"
        assert joined["peerId"] == "A"
        a.websocket.clear()

        assert await hub.join(b, "r1", "B") == 2

        assert a.websocket.types() == ["peer-joined", "peer-reconnect-needed"]
        peer_joined, reconnect = a.websocket.sent
        assert (peer_joined["peerId"], peer_joined["peerCount"]) == ("B", 2)
        assert (reconnect["newPeerId"], reconnect["peerCount"]) == ("B", 2)

        assert b.websocket.types() == ["room-joined", "peers-available"]
        room_joined, available = b.websocket.sent
        assert room_joined["peers"] == ["A"]
        assert room_joined["peerCount"] == 2
        assert available == {"type": "peers-available", "peers": ["A"], "room": "r1"}

    asyncio.run(scenario())


def test_disconnect_scenario_cleans_up_room():
    async def scenario():
        hub = SignalingHub()
        a, b = make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")
        a.websocket.clear()

        b.websocket.state = State.CLOSED
        assert await hub.disconnect(b) == ["B"]

        assert a.websocket.types() == ["peer-left"]
        assert a.websocket.sent[0]["peerId"] == "B"
        assert a.websocket.sent[0]["peerCount"] == 1
        assert hub.registry.has_room("r1")
        assert not hub.registry.has_peer("B")

        assert await hub.disconnect(a) == ["A"]
        assert not hub.registry.has_room("r1")
        assert hub.get_stats()["activeRooms"] == 0

    asyncio.run(scenario())


def test_leave_unknown_peer_is_idempotent():
    async def scenario():
        hub = SignalingHub()
        a = make_connection()
        await hub.join(a, "r1", "A")
        a.websocket.clear()

        assert not await hub.leave("ghost")
        assert not await hub.leave("")
        assert not await hub.leave(None)
        assert a.websocket.sent == []
        assert hub.registry.room_members("r1") == ["A"]

        assert await hub.leave("A")
        assert not await hub.leave("A")
        assert not hub.registry.has_room("r1")
        assert hub.metrics.leaves == 1

    asyncio.run(scenario())


def test_leave_does_not_notify_leaving_peer():
    async def scenario():
        hub = SignalingHub()
        a, b = make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")
        a.websocket.clear()
        b.websocket.clear()

        assert await hub.leave("B", b)
        assert a.websocket.types() == ["peer-left"]
        assert b.websocket.sent == []

    asyncio.run(scenario())


def test_leave_from_foreign_connection_is_ignored():
    async def scenario():
        hub = SignalingHub()
        a, b = make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")

        assert not await hub.leave("A", b)
        assert hub.registry.room_members("r1") == ["A", "B"]

    asyncio.run(scenario())


def test_rejoin_moves_peer_between_rooms():
    async def scenario():
        hub = SignalingHub()
        a, x, y = make_connection(), make_connection(), make_connection()
        await hub.join(x, "room-a", "X")
        await hub.join(y, "room-b", "Y")
        await hub.join(a, "room-a", "A")
        x.websocket.clear()
        y.websocket.clear()
        a.websocket.clear()

        assert await hub.join(a, "room-b", "A") == 2

        assert hub.registry.room_members("room-a") == ["X"]
        assert hub.registry.room_members("room-b") == ["Y", "A"]
        assert hub.registry.get_peer("A").room_id == "room-b"

        assert x.websocket.types() == ["peer-left"]
        assert x.websocket.sent[0]["peerCount"] == 1
        assert y.websocket.types() == ["peer-joined", "peer-reconnect-needed"]
        assert a.websocket.types() == ["room-joined", "peers-available"]
        assert hub.metrics.rejoins == 1

    asyncio.run(scenario())


def test_rejoin_last_member_removes_old_room():
    async def scenario():
        hub = SignalingHub()
        a = make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(a, "r2", "A")

        assert not hub.registry.has_room("r1")
        assert hub.registry.rooms() == ["r2"]

    asyncio.run(scenario())


def test_rejoin_same_room_from_new_connection():
    async def scenario():
        hub = SignalingHub()
        old, new, b = make_connection(), make_connection(), make_connection()
        await hub.join(old, "r1", "A")
        await hub.join(b, "r1", "B")
        b.websocket.clear()

        await hub.join(new, "r1", "A")

        assert hub.registry.get_peer("A").connection is new
        assert hub.registry.room_members("r1") == ["B", "A"]
        assert b.websocket.types() == [
            "peer-left",
            "peer-joined",
            "peer-reconnect-needed",
        ]
        # 旧连接关闭时不会再移除新的 A
        assert await hub.disconnect(old) == []
        assert hub.registry.has_peer("A")

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "room, peer_id",
    [("", "A"), ("r1", ""), (None, "A"), ("r1", None), (["r1"], "A"), ("r1", 5)],
)
def test_join_validation(room, peer_id):
    async def scenario():
        hub = SignalingHub()
        a = make_connection()

        with pytest.raises(ValidationError) as exc_info:
            await hub.join(a, room, peer_id)
        assert exc_info.value.message == "Room and peerId are required"
        assert hub.get_stats()["connectedPeers"] == 0
        assert a.websocket.sent == []

    asyncio.run(scenario())


def test_notifications_exclude_trigger_and_counts_match_registry():
    async def scenario():
        hub = SignalingHub()
        connections = {peer: make_connection() for peer in "ABCD"}

        for peer, connection in connections.items():
            await hub.join(connection, "r1", peer)
            count = len(hub.registry.room_members("r1"))
            for other, other_connection in connections.items():
                notices = other_connection.websocket.of_type("peer-joined")
                if other == peer:
                    assert all(n["peerId"] != peer for n in notices)
                elif notices and notices[-1]["peerId"] == peer:
                    assert notices[-1]["peerCount"] == count

        for connection in connections.values():
            connection.websocket.clear()

        await hub.leave("B")
        assert connections["B"].websocket.sent == []
        for peer in "ACD":
            notice = connections[peer].websocket.of_type("peer-left")[-1]
            assert notice["peerId"] == "B"
            assert notice["peerCount"] == 3

        await hub.join(make_connection(), "r1", "E")
        for peer in "ACD":
            reconnect = connections[peer].websocket.of_type("peer-reconnect-needed")
            assert reconnect[-1]["newPeerId"] == "E"
            assert reconnect[-1]["peerCount"] == 4

    asyncio.run(scenario())


def test_targeted_relay_reaches_only_target():
    async def scenario():
        hub = SignalingHub()
        a, b, c = make_connection(), make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")
        await hub.join(c, "r1", "C")
        for connection in (a, b, c):
            connection.websocket.clear()

        payload = {"sdp": "v=0\r\no=- 4611 2 IN IP4 127.0.0.1\r\n", "type": "offer"}
        message = relay(MessageKind.OFFER, "A", "r1", "B", payload)

        assert await hub.relay(a, message) == 1
        assert b.websocket.sent == [message.to_dict()]
        assert b.websocket.sent[0]["payload"] == payload
        assert a.websocket.sent == []
        assert c.websocket.sent == []

    asyncio.run(scenario())


def test_broadcast_relay_stays_in_room():
    async def scenario():
        hub = SignalingHub()
        a, b, c, d = (make_connection() for _ in range(4))
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")
        await hub.join(c, "r1", "C")
        await hub.join(d, "r2", "D")
        for connection in (a, b, c, d):
            connection.websocket.clear()

        message = relay(MessageKind.ICE_CANDIDATE, "A", "r1", "broadcast", "cand")

        assert await hub.relay(a, message) == 2
        assert b.websocket.types() == ["ice-candidate"]
        assert c.websocket.types() == ["ice-candidate"]
        assert a.websocket.sent == []
        assert d.websocket.sent == []

        assert await hub.relay(a, relay(MessageKind.OFFER, "A", "nope", None, 1)) == 0

    asyncio.run(scenario())


def test_relay_to_absent_peer_is_dropped_silently():
    async def scenario():
        hub = SignalingHub()
        a = make_connection()
        await hub.join(a, "r1", "A")
        a.websocket.clear()

        message = relay(MessageKind.OFFER, "A", "r1", "B", "X")

        assert await hub.relay(a, message) == 0
        assert a.websocket.sent == []
        assert hub.metrics.relays_received == 1
        assert hub.metrics.relays_dropped == 1
        assert hub.metrics.deliveries_attempted == 0
        assert hub.metrics.deliveries_succeeded == 0

    asyncio.run(scenario())


def test_relay_to_closed_connection_is_dropped():
    async def scenario():
        hub = SignalingHub()
        a, b = make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")
        b.websocket.clear()
        b.websocket.state = State.CLOSED

        assert await hub.relay(a, relay(MessageKind.ANSWER, "A", "r1", "B", "X")) == 0
        assert b.websocket.sent == []
        assert hub.metrics.relays_dropped == 1

    asyncio.run(scenario())


def test_relay_drop_raises_when_notification_enabled():
    async def scenario():
        hub = SignalingHub(notify_delivery_failure=True)
        a = make_connection()
        await hub.join(a, "r1", "A")

        with pytest.raises(DeliveryFailure) as exc_info:
            await hub.relay(a, relay(MessageKind.OFFER, "A", "r1", "B", "X"))
        assert exc_info.value.target_peer == "B"
        assert hub.metrics.relays_dropped == 1

    asyncio.run(scenario())


def test_relay_counts_successful_deliveries():
    async def scenario():
        hub = SignalingHub()
        a, b = make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")

        await hub.relay(a, relay(MessageKind.OFFER, "A", "r1", "B", "X"))
        assert hub.metrics.deliveries_attempted == 1
        assert hub.metrics.deliveries_succeeded == 1
        assert hub.metrics.relays_dropped == 0

    asyncio.run(scenario())


def test_failed_send_does_not_stop_broadcast():
    async def scenario():
        hub = SignalingHub()
        a, broken, c = make_connection(), make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(broken, "r1", "B")
        await hub.join(c, "r1", "C")
        a.websocket.clear()
        c.websocket.clear()
        broken.websocket.fail = True

        message = relay(MessageKind.OFFER, "A", "r1", "broadcast", "X")
        assert await hub.relay(a, message) == 1
        assert c.websocket.types() == ["offer", "peer-left"]
        assert hub.metrics.send_failures == 1

        # 发送失败的连接被关闭，Peer 走离开流程
        assert not hub.registry.has_peer("B")
        assert hub.registry.room_members("r1") == ["A", "C"]
        assert a.websocket.of_type("peer-left")[0]["peerId"] == "B"
        await asyncio.sleep(0)
        assert broken.websocket.close_code == 1011

    asyncio.run(scenario())


def test_send_timeout_removes_stalled_peer():
    async def scenario():
        hub = SignalingHub(send_timeout=0.05)
        a, b, c = make_connection(), make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")
        await hub.join(c, "r1", "C")
        b.websocket.clear()
        c.websocket.clear()

        # A 的 WebSocket 仍处于 OPEN，但发送一直卡住
        a.websocket.stall = 1.0
        candidate = relay(MessageKind.ICE_CANDIDATE, "B", "r1", "broadcast", "X")
        assert await hub.relay(b, candidate) == 1

        assert not hub.registry.has_peer("A")
        assert hub.get_stats()["roomDetails"][0]["peerCount"] == 2
        for websocket in (b.websocket, c.websocket):
            left = websocket.of_type("peer-left")
            assert [m["peerId"] for m in left] == ["A"]
            assert left[0]["peerCount"] == 2

        # 之后发给 A 的消息直接丢弃，新成员看不到 A
        assert await hub.relay(b, relay(MessageKind.OFFER, "B", "r1", "A", "X")) == 0
        d = make_connection()
        await hub.join(d, "r1", "D")
        joined = d.websocket.of_type("room-joined")[0]
        assert joined["peers"] == ["B", "C"]
        assert joined["peerCount"] == 3

        await asyncio.sleep(0)
        assert a.websocket.close_code == 1011

    asyncio.run(scenario())


def test_failed_send_to_new_joiner_undoes_join():
    async def scenario():
        hub = SignalingHub()
        a, broken = make_connection(), make_connection(fail=True)
        await hub.join(a, "r1", "A")
        a.websocket.clear()

        await hub.join(broken, "r1", "B")

        assert not hub.registry.has_peer("B")
        assert a.websocket.types() == [
            "peer-joined",
            "peer-reconnect-needed",
            "peer-left",
        ]
        assert hub.registry.room_members("r1") == ["A"]

    asyncio.run(scenario())


def test_relay_preserves_order_from_one_sender():
    async def scenario():
        hub = SignalingHub()
        a, b = make_connection(), make_connection()
        await hub.join(a, "r1", "A")
        await hub.join(b, "r1", "B")
        b.websocket.clear()

        for index in range(20):
            await hub.relay(
                a, relay(MessageKind.ICE_CANDIDATE, "A", "r1", "B", index)
            )
        assert [m["payload"] for m in b.websocket.sent] == list(range(20))

    asyncio.run(scenario())


def test_concurrent_joins_keep_registry_consistent():
    async def scenario():
        hub = SignalingHub()
        connections = [make_connection() for _ in range(30)]

        await asyncio.gather(
            *(
                hub.join(connection, f"r{index % 3}", f"P{index}")
                for index, connection in enumerate(connections)
            )
        )
        stats = hub.get_stats()
        assert stats["connectedPeers"] == 30
        assert sorted(r["peerCount"] for r in stats["roomDetails"]) == [10, 10, 10]

        # 每个房间最后加入者看到的人数等于房间最终人数
        for room in stats["roomDetails"]:
            last = room["peers"][-1]
            index = int(last[1:])
            joined = connections[index].websocket.of_type("room-joined")[0]
            assert joined["peerCount"] == 10

        await asyncio.gather(*(hub.disconnect(c) for c in connections))
        assert hub.get_stats() == {
            "connectedPeers": 0,
            "activeRooms": 0,
            "roomDetails": [],
        }

    asyncio.run(scenario())


def test_disconnect_removes_every_peer_of_connection():
    async def scenario():
        hub = SignalingHub()
        shared, other = make_connection(), make_connection()
        await hub.join(shared, "r1", "A")
        await hub.join(shared, "r2", "A2")
        await hub.join(other, "r1", "B")

        assert sorted(await hub.disconnect(shared)) == ["A", "A2"]
        assert hub.registry.rooms() == ["r1"]
        assert hub.registry.room_members("r1") == ["B"]

    asyncio.run(scenario())
