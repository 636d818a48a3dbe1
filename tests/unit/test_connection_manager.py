"""
WebSocket 연결 관리자 유닛 테스트
"""
from typing import Any, List

import pytest

from app.services.connection_manager import ConnectionManager
from app.services.pubsub import BroadcastMessage, InMemoryPubSub


class RecordingSender:
    """받은 이벤트를 기록하는 연결"""

    def __init__(self, fail: bool = False) -> None:
        self.events: List[Any] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.events.append(data)


EVENT = {"type": "assistant_message_sync", "output": "Here are some options"}


@pytest.fixture
def bus() -> InMemoryPubSub:
    return InMemoryPubSub()


@pytest.fixture
def manager(bus) -> ConnectionManager:
    return ConnectionManager("server-a", bus)


class TestRegistration:
    """연결 등록 테스트"""

    async def test_register_and_unregister(self, manager):
        """양쪽 인덱스가 함께 갱신"""
        await manager.register("c1", RecordingSender(), user_id="u1")
        await manager.register("c2", RecordingSender())

        assert await manager.user_of("c1") == "u1"
        assert await manager.connections_of("u1") == {"c1"}
        assert await manager.stats() == {"connections": 2, "authenticated_users": 1}

        await manager.unregister("c1")
        assert await manager.user_of("c1") is None
        assert await manager.connections_of("u1") == set()
        assert await manager.stats() == {"connections": 1, "authenticated_users": 0}

    async def test_associate_user_relinks(self, manager):
        """다른 사용자로 재인증하면 이전 사용자에서 제거"""
        await manager.register("c1", RecordingSender(), user_id="u1")
        await manager.associate_user("c1", "u2")

        assert await manager.connections_of("u1") == set()
        assert await manager.connections_of("u2") == {"c1"}

    async def test_associate_unknown_connection_ignored(self, manager):
        """등록되지 않은 연결은 무시"""
        await manager.associate_user("missing", "u1")
        assert await manager.connections_of("u1") == set()


class TestBroadcast:
    """사용자 브로드캐스트 테스트"""

    async def test_excludes_origin_connection(self, manager, bus):
        """발신 연결을 제외한 같은 사용자의 연결에 전달"""
        c1, c2, c3, other = RecordingSender(), RecordingSender(), RecordingSender(), RecordingSender()
        await manager.register("c1", c1, user_id="u1")
        await manager.register("c2", c2, user_id="u1")
        await manager.register("c3", c3, user_id="u1")
        await manager.register("c4", other, user_id="u2")

        delivered = await manager.broadcast_to_user("u1", EVENT, exclude_connection_id="c1")

        assert delivered == 2
        assert c1.events == []
        assert c2.events == [EVENT]
        assert c3.events == [EVENT]
        assert other.events == []
        assert bus.published[0].user_id == "u1"
        assert bus.published[0].event_type == "assistant_message_sync"

    async def test_failed_send_does_not_stop_others(self, manager):
        """전송 실패한 연결이 있어도 나머지는 전달"""
        healthy = RecordingSender()
        await manager.register("c1", RecordingSender(fail=True), user_id="u1")
        await manager.register("c2", healthy, user_id="u1")

        assert await manager.broadcast_to_user("u1", EVENT) == 1
        assert healthy.events == [EVENT]

    async def test_delivered_across_servers(self, bus):
        """다른 서버의 연결에도 pub/sub으로 전달, 자기 메시지는 재전달하지 않음"""
        server_a = ConnectionManager("server-a", bus)
        server_b = ConnectionManager("server-b", bus)
        await server_a.start()
        await server_b.start()

        on_a, on_b = RecordingSender(), RecordingSender()
        await server_a.register("a1", on_a, user_id="u1")
        await server_b.register("b1", on_b, user_id="u1")

        await server_a.broadcast_to_user("u1", EVENT)

        assert on_a.events == [EVENT]
        assert on_b.events == [EVENT]

    async def test_bus_message_from_same_server_ignored(self, manager):
        """같은 서버에서 발행된 메시지는 무시"""
        sender = RecordingSender()
        await manager.register("c1", sender, user_id="u1")

        await manager.handle_bus_message(
            BroadcastMessage(user_id="u1", event_type="session_changed", payload=EVENT, server_id="server-a")
        )
        assert sender.events == []

    async def test_bus_message_respects_exclusion(self, manager):
        """원격 메시지도 제외 연결 적용"""
        c1, c2 = RecordingSender(), RecordingSender()
        await manager.register("c1", c1, user_id="u1")
        await manager.register("c2", c2, user_id="u1")

        await manager.handle_bus_message(
            BroadcastMessage(
                user_id="u1",
                event_type="session_changed",
                payload=EVENT,
                server_id="server-b",
                exclude_connection_id="c1",
            )
        )
        assert c1.events == []
        assert c2.events == [EVENT]
