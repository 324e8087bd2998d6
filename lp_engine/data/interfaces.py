"""
외부 협력자 인터페이스

엔진이 소비하는 경계 기능들. 구현체는 memory.py(시뮬레이션/테스트)와
rpc_client.py(JSON-RPC 읽기 전용)에 있습니다.
"""

from typing import List, Protocol, Sequence, Tuple

from .types import PoolState, PositionRecord, TickBoundary


class PriceSource(Protocol):
    """Pool 가격 상태 소스 (읽기 전용)"""

    def current_state(self, pool_id: str) -> PoolState:
        ...

    def tick_boundary_growth(self, pool_id: str, tick: int) -> TickBoundary:
        ...

    def observe(self, pool_id: str, seconds_agos: Sequence[int]) -> List[int]:
        """secondsAgo별 누적 틱

        Raises:
            InsufficientHistory: 가장 오래된 요청 시점의 기록이 없는 경우
        """
        ...


class PositionReader(Protocol):
    """포지션 소유권/상태 조회"""

    def owner_of(self, position_id: int) -> str:
        ...

    def position_info(self, position_id: int) -> PositionRecord:
        ...


class Custody(PositionReader, Protocol):
    """포지션 보관자: 정산/출금과 유동성 추가"""

    def settle_and_withdraw(
        self,
        position_id: int,
        liquidity: int,
        amount0_min: int,
        amount1_min: int,
        fee_cap0: int,
        fee_cap1: int
    ) -> Tuple[int, int]:
        """유동성 제거 + 수수료 정산 후 토큰을 엔진 금고로 출금"""
        ...

    def add_liquidity(
        self,
        position_id: int,
        amount0: int,
        amount1: int,
        amount0_min: int,
        amount1_min: int
    ) -> Tuple[int, int, int]:
        """(liquidity, used0, used1) 반환. 사용한 토큰은 엔진 금고에서 빠져나감"""
        ...


class SwapExecutor(Protocol):
    """외부 스왑 실행기. 반환값은 신뢰하지 않고 금고 잔액 변화로 검증합니다"""

    def swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        amount_out_min: int,
        route: bytes
    ) -> Tuple[int, int]:
        ...


class TokenVault(Protocol):
    """엔진이 보유한 토큰 잔액"""

    def balance_of(self, token: str) -> int:
        ...

    def transfer(self, token: str, to: str, amount: int) -> None:
        ...
