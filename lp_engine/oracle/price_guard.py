"""
Price Guard - 가격 조작 방어

현재 틱을 TWAP 틱과 비교하고, 검증된 가격으로 스왑 최소 출력량을 계산합니다.
오라클을 사용할 수 없으면 검증은 실패합니다 (fail closed).

핵심 공식:
    |twap_tick - current_tick| <= max_tick_difference
    price = sqrtPriceX96² / 2^192    (sqrtPriceX96로 두 번 곱하거나 나눔)
    amountOutMin = amountIn × (Q64 - maxDiffX64) / Q64 × price   (token0 판매)
                 = amountIn × (Q64 - maxDiffX64) / Q64 / price   (token1 판매)
"""

import logging

from ..constants import Q64
from ..errors import InsufficientHistory, PriceDeviationExceeded, SlippageExceeded
from ..math.fixed_point import amount0_to_amount1, amount1_to_amount0, mul_div
from .tick_oracle import TickOracle

logger = logging.getLogger(__name__)


def check_deviation(current_tick: int, twap_tick: int, max_tick_difference: int) -> bool:
    """현재 틱과 TWAP 틱의 차이가 허용 범위 이내인지 (양방향 대칭)"""
    return abs(twap_tick - current_tick) <= max_tick_difference


def min_acceptable_output(
    amount_in: int,
    sqrt_price_x96: int,
    selling_token0: bool,
    max_price_difference_x64: int
) -> int:
    """스왑 최소 허용 출력량

    Args:
        amount_in: 판매 수량
        sqrt_price_x96: 검증된 현재 sqrtPriceX96
        selling_token0: True면 token0 → token1
        max_price_difference_x64: 허용 가격 차이 (Q64, 예: Q64 // 100 = 1%)

    Returns:
        최소 출력량
    """
    if not 0 <= max_price_difference_x64 <= Q64:
        raise ValueError(f"max_price_difference_x64 범위 오류: {max_price_difference_x64}")

    scaled_in = mul_div(amount_in, Q64 - max_price_difference_x64, Q64)

    if selling_token0:
        return amount0_to_amount1(scaled_in, sqrt_price_x96)
    return amount1_to_amount0(scaled_in, sqrt_price_x96)


def require_min_output(received: int, amount_out_min: int) -> None:
    """스왑 결과 검증

    Raises:
        SlippageExceeded: received < amount_out_min
    """
    if received < amount_out_min:
        raise SlippageExceeded(received, amount_out_min)


class PriceGuard:
    """TWAP 기반 가격 검증기

    사용법:
        guard = PriceGuard(TickOracle(price_source))
        twap_tick = guard.validate(pool_id, current_tick, 60, 100)
    """

    def __init__(self, oracle: TickOracle):
        self.oracle = oracle

    def is_valid(
        self,
        pool_id: str,
        current_tick: int,
        window_seconds: int,
        max_tick_difference: int
    ) -> bool:
        """검증 통과 여부. 오라클을 사용할 수 없으면 False"""
        twap_tick = self.oracle.twap_tick(pool_id, window_seconds)
        if twap_tick is None:
            return False
        return check_deviation(current_tick, twap_tick, max_tick_difference)

    def validate(
        self,
        pool_id: str,
        current_tick: int,
        window_seconds: int,
        max_tick_difference: int
    ) -> int:
        """현재 틱 검증 후 TWAP 틱 반환

        Raises:
            InsufficientHistory: 오라클 기록 부족
            PriceDeviationExceeded: 편차가 허용치 초과
        """
        twap_tick = self.oracle.twap_tick(pool_id, window_seconds)
        if twap_tick is None:
            raise InsufficientHistory(pool_id, window_seconds)

        if not check_deviation(current_tick, twap_tick, max_tick_difference):
            logger.warning(
                "TWAP 편차 초과: pool=%s current=%s twap=%s max=%s",
                pool_id, current_tick, twap_tick, max_tick_difference
            )
            raise PriceDeviationExceeded(
                f"현재 틱 {current_tick}이(가) TWAP 틱 {twap_tick}에서 "
                f"{max_tick_difference}틱 이상 벗어났습니다"
            )
        return twap_tick
