"""
Tick Oracle - 시간가중평균 틱 (TWAP)

가격 소스에서 두 시점(secondsAgo = 0, W)의 누적 틱을 읽어 평균 틱을 계산합니다.
가격 소스가 W초 전 기록을 보유하지 않으면 값을 추정하지 않고 None을 반환합니다.

핵심 공식:
    avg_tick = floor((cum[0] - cum[W]) / W)    # 음의 무한대 방향 내림
"""

import logging
from typing import Optional

from ..errors import InsufficientHistory
from ..data.interfaces import PriceSource
from ..data.types import TwapObservation

logger = logging.getLogger(__name__)


def average_tick(tick_cumulative_now: int, tick_cumulative_then: int, window_seconds: int) -> int:
    """누적 틱 두 개로 평균 틱 계산

    차이가 음수이고 W로 나누어떨어지지 않으면 절사 나눗셈보다 1 작은 값이 됩니다.
    (Python의 // 는 floor 나눗셈)

    Args:
        tick_cumulative_now: secondsAgo = 0 의 누적 틱
        tick_cumulative_then: secondsAgo = W 의 누적 틱
        window_seconds: 윈도우 길이 W (초)

    Returns:
        평균 틱
    """
    if window_seconds <= 0:
        raise ValueError(f"TWAP 윈도우는 양수여야 합니다: {window_seconds}")
    return (tick_cumulative_now - tick_cumulative_then) // window_seconds


class TickOracle:
    """TWAP 틱 오라클

    상태: Unavailable (None 반환) → Available (TwapObservation 반환).
    호출할 때마다 가격 소스를 새로 조회하며 결과를 캐시하지 않습니다.

    사용법:
        oracle = TickOracle(price_source)
        observation = oracle.observe_twap(pool_id, 60)
        if observation is None:
            ...  # 기록 부족
    """

    def __init__(self, price_source: PriceSource):
        self.price_source = price_source

    def observe_twap(self, pool_id: str, window_seconds: int) -> Optional[TwapObservation]:
        """window_seconds 동안의 TWAP 관측

        Returns:
            TwapObservation 또는 기록이 부족하면 None
        """
        if window_seconds <= 0:
            raise ValueError(f"TWAP 윈도우는 양수여야 합니다: {window_seconds}")

        try:
            cumulatives = self.price_source.observe(pool_id, [0, window_seconds])
        except InsufficientHistory:
            logger.warning("TWAP 관측 불가: pool=%s window=%ss", pool_id, window_seconds)
            return None

        if len(cumulatives) != 2:
            raise ValueError(f"누적 틱 2개가 필요합니다: {cumulatives}")

        now, then = cumulatives
        return TwapObservation(
            tick_cumulative_now=now,
            tick_cumulative_then=then,
            window_seconds=window_seconds,
            average_tick=average_tick(now, then, window_seconds),
        )

    def twap_tick(self, pool_id: str, window_seconds: int) -> Optional[int]:
        """평균 틱만 반환 (기록 부족 시 None)"""
        observation = self.observe_twap(pool_id, window_seconds)
        return None if observation is None else observation.average_tick
