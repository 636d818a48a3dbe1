"""
API 키 로테이터
외부 호출(LLM, 검색)용 키를 라운드로빈으로 공급하고 소진 상태 추적
"""
import logging
import threading
from typing import Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class KeysExhaustedError(Exception):
    """사용 가능한 API 키 없음"""

    pass


class KeyRotator:
    """
    라운드로빈 키 로테이터

    여러 코루틴/스레드에서 동시에 호출되므로 인덱스와 소진 집합은 하나의 락으로 보호한다.
    """

    def __init__(self, name: str, keys: List[str]) -> None:
        self.name = name
        self._keys = [key for key in keys if key]
        self._exhausted: Set[int] = set()
        self._next_index = 0
        self._usage: Dict[int, int] = {}
        self._lock = threading.Lock()

    @property
    def total_keys(self) -> int:
        return len(self._keys)

    def get_next_key(self) -> Tuple[str, int]:
        """
        다음 사용 가능한 키 반환

        Returns:
            (키, 인덱스)

        Raises:
            KeysExhaustedError: 키가 없거나 전부 소진됨
        """
        with self._lock:
            total = len(self._keys)
            if total == 0:
                raise KeysExhaustedError(f"{self.name}: 설정된 API 키가 없습니다")

            for offset in range(total):
                index = (self._next_index + offset) % total
                if index not in self._exhausted:
                    self._next_index = (index + 1) % total
                    self._usage[index] = self._usage.get(index, 0) + 1
                    return self._keys[index], index

            raise KeysExhaustedError(f"{self.name}: 모든 API 키가 소진되었습니다 ({total}개)")

    def mark_exhausted(self, index: int) -> None:
        """키를 소진 상태로 표시"""
        with self._lock:
            if 0 <= index < len(self._keys):
                self._exhausted.add(index)
                logger.warning(
                    f"[KeyRotator] {self.name} 키 #{index} 소진 "
                    f"({len(self._exhausted)}/{len(self._keys)})"
                )

    def reset(self, index: Optional[int] = None) -> None:
        """소진 상태 초기화 (인덱스 생략 시 전체)"""
        with self._lock:
            if index is None:
                self._exhausted.clear()
            else:
                self._exhausted.discard(index)

    def stats(self) -> Dict[str, object]:
        """키 사용 통계"""
        with self._lock:
            return {
                "name": self.name,
                "total_keys": len(self._keys),
                "available_keys": len(self._keys) - len(self._exhausted),
                "exhausted_indexes": sorted(self._exhausted),
                "usage": dict(self._usage),
            }
