"""
WebSocket 연결 관리자
사용자별 다중 기기 연결 추적 및 실시간 동기화 (로컬 전달 + 서버 간 pub/sub)
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from app.services.pubsub import BroadcastMessage, PubSubBus

logger = logging.getLogger(__name__)


class JSONSender(Protocol):
    """send_json을 가진 연결 (FastAPI WebSocket 등)"""

    async def send_json(self, data: Any) -> None:
        ...


class ConnectionManager:
    """
    연결 인덱스 (connection → sender/user, user → connections)

    두 인덱스는 하나의 락 안에서 함께 변경한다. 전송은 락 밖에서 스냅샷으로 수행한다.
    """

    def __init__(self, server_id: str, bus: Optional[PubSubBus] = None) -> None:
        self.server_id = server_id
        self._bus = bus
        self._senders: Dict[str, JSONSender] = {}
        self._connection_users: Dict[str, str] = {}
        self._user_connections: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    # ========== 등록 / 해제 ==========

    async def register(self, connection_id: str, sender: JSONSender, user_id: Optional[str] = None) -> None:
        """연결 등록"""
        async with self._lock:
            self._senders[connection_id] = sender
            if user_id:
                self._link(connection_id, user_id)

        logger.info(f"[WS] 연결 등록: {connection_id} (user={user_id or 'anonymous'})")

    async def unregister(self, connection_id: str) -> None:
        """연결 해제 (양쪽 인덱스에서 제거)"""
        async with self._lock:
            self._senders.pop(connection_id, None)
            self._unlink(connection_id)

        logger.info(f"[WS] 연결 해제: {connection_id}")

    async def associate_user(self, connection_id: str, user_id: str) -> None:
        """연결을 (다른) 사용자에 연결"""
        async with self._lock:
            if connection_id not in self._senders:
                return
            if self._connection_users.get(connection_id) == user_id:
                return
            self._unlink(connection_id)
            self._link(connection_id, user_id)

        logger.info(f"[WS] 연결 {connection_id} 사용자 인증: {user_id}")

    def _link(self, connection_id: str, user_id: str) -> None:
        self._connection_users[connection_id] = user_id
        self._user_connections.setdefault(user_id, set()).add(connection_id)

    def _unlink(self, connection_id: str) -> None:
        user_id = self._connection_users.pop(connection_id, None)
        if user_id is None:
            return
        connections = self._user_connections.get(user_id)
        if connections is not None:
            connections.discard(connection_id)
            if not connections:
                del self._user_connections[user_id]

    # ========== 조회 ==========

    async def user_of(self, connection_id: str) -> Optional[str]:
        async with self._lock:
            return self._connection_users.get(connection_id)

    async def connections_of(self, user_id: str) -> Set[str]:
        async with self._lock:
            return set(self._user_connections.get(user_id, set()))

    async def stats(self) -> Dict[str, int]:
        async with self._lock:
            return {
                "connections": len(self._senders),
                "authenticated_users": len(self._user_connections),
            }

    # ========== 전송 ==========

    async def send_to(self, connection_id: str, event: Dict[str, Any]) -> bool:
        """단일 연결로 전송"""
        async with self._lock:
            sender = self._senders.get(connection_id)
        if sender is None:
            return False
        return await self._safe_send(connection_id, sender, event)

    async def _safe_send(self, connection_id: str, sender: JSONSender, event: Dict[str, Any]) -> bool:
        try:
            await sender.send_json(event)
            return True
        except Exception as e:
            logger.warning(f"[WS] {connection_id} 전송 실패 ({event.get('type')}): {e}")
            return False

    async def deliver_local(
        self,
        user_id: str,
        event: Dict[str, Any],
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        """이 프로세스에 있는 사용자의 연결들에 전달"""
        async with self._lock:
            targets: List[Tuple[str, JSONSender]] = [
                (cid, self._senders[cid])
                for cid in self._user_connections.get(user_id, set())
                if cid != exclude_connection_id and cid in self._senders
            ]

        delivered = 0
        for connection_id, sender in targets:
            if await self._safe_send(connection_id, sender, event):
                delivered += 1
        return delivered

    async def broadcast_to_user(
        self,
        user_id: str,
        event: Dict[str, Any],
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        """
        사용자의 모든 기기로 이벤트 전달

        로컬 연결에 직접 보내고, 다른 서버를 위해 pub/sub으로 발행한다.

        Returns:
            로컬에서 전달된 연결 수
        """
        delivered = await self.deliver_local(user_id, event, exclude_connection_id)

        if self._bus is not None:
            await self._bus.publish(
                BroadcastMessage(
                    user_id=user_id,
                    event_type=str(event.get("type", "")),
                    payload=event,
                    server_id=self.server_id,
                    exclude_connection_id=exclude_connection_id,
                )
            )

        logger.debug(f"[WS] {event.get('type')} → user {user_id}: 로컬 {delivered}개")
        return delivered

    async def handle_bus_message(self, message: BroadcastMessage) -> None:
        """pub/sub 수신 처리 (자기 메시지는 무시, 재발행하지 않음)"""
        if message.server_id == self.server_id:
            return
        await self.deliver_local(message.user_id, message.payload, message.exclude_connection_id)

    async def start(self) -> None:
        """pub/sub 구독 시작"""
        if self._bus is not None:
            await self._bus.subscribe(self.handle_bus_message)
