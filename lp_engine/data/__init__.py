"""
Data layer for LP Engine

외부 협력자 인터페이스와 데이터 타입 정의.
구현체: memory (인메모리 시뮬레이션), rpc_client (JSON-RPC 읽기 전용)
"""

from .types import (
    PoolState,
    TickBoundary,
    PositionRecord,
    TwapObservation,
    RewardConversion,
    SwapPlan,
    Breakdown,
    CompoundResult,
    LedgerEvent,
)
from .interfaces import PriceSource, PositionReader, Custody, SwapExecutor, TokenVault
