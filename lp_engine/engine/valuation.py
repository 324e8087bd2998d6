"""
Position Valuator - 기준 가격 기반 포지션 평가

pool의 순간 가격이 아닌 외부 기준 가격(오라클)으로 포지션의 토큰 구성을 계산합니다.
블록 내 일시적인 가격 조작으로 담보 가치를 부풀리거나 줄일 수 없도록 하기 위함입니다.
기준 가격과 pool 가격의 차이가 pool별 허용치를 넘으면 평가를 거부합니다.

핵심 공식:
    priceX96(token1/token0) = price0X96 × 2^96 / price1X96
    sqrtPriceX96 = isqrt(priceX96 × 2^96)
    deviationX64 = |P_pool - P_ref| × 2^64 / max(P_pool, P_ref)   (sqrt 가격 기준)
"""

import logging
from typing import Tuple

from ..config import EngineConfig
from ..constants import Q64, Q96
from ..data.interfaces import PriceSource
from ..data.types import Breakdown, PositionRecord
from ..errors import DivisionByZero, OracleDeviation
from ..math.fixed_point import integer_sqrt, mul_div
from ..math.liquidity_math import get_amounts_for_liquidity
from ..math.tick_math import get_sqrt_ratios_for_range
from .fees import FeeAccountant

logger = logging.getLogger(__name__)


def amounts_for_liquidity(
    reference_sqrt_price_x96: int,
    sqrt_price_lower_x96: int,
    sqrt_price_upper_x96: int,
    liquidity: int
) -> Tuple[int, int]:
    """기준 가격에서 유동성이 나타내는 (amount0, amount1)"""
    return get_amounts_for_liquidity(
        reference_sqrt_price_x96, sqrt_price_lower_x96, sqrt_price_upper_x96, liquidity
    )


def reference_sqrt_price_x96(price0_x96: int, price1_x96: int) -> int:
    """두 토큰의 기준 가격(공통 견적 단위, Q96)에서 sqrtPriceX96 계산

    Args:
        price0_x96: token0 최소 단위 1개의 가격 (Q96)
        price1_x96: token1 최소 단위 1개의 가격 (Q96)

    Returns:
        token1/token0 sqrtPriceX96
    """
    price_x96 = mul_div(price0_x96, Q96, price1_x96)
    return integer_sqrt(price_x96 * Q96)


def price_deviation_x64(pool_sqrt_price_x96: int, reference_sqrt_price_x96: int) -> int:
    """두 sqrt 가격의 상대 차이 (Q64)"""
    larger = max(pool_sqrt_price_x96, reference_sqrt_price_x96)
    if larger == 0:
        raise DivisionByZero("가격이 모두 0입니다")
    return mul_div(abs(pool_sqrt_price_x96 - reference_sqrt_price_x96), Q64, larger)


class PositionValuator:
    """포지션 평가기

    사용법:
        valuator = PositionValuator(price_source, config)
        breakdown = valuator.breakdown(position, price0_x96, price1_x96)
    """

    def __init__(self, price_source: PriceSource, config: EngineConfig):
        self.price_source = price_source
        self.config = config
        self.fees = FeeAccountant(price_source)

    def breakdown(
        self,
        position: PositionRecord,
        price0_x96: int,
        price1_x96: int
    ) -> Breakdown:
        """기준 가격으로 포지션 구성 계산

        Raises:
            OracleDeviation: pool 가격과 기준 가격의 차이가 허용치 초과
            InconsistentFeeState: fee 스냅샷 역행
        """
        pool_state = self.price_source.current_state(position.pool_id)
        ref_sqrt = reference_sqrt_price_x96(price0_x96, price1_x96)

        deviation = price_deviation_x64(pool_state.sqrt_price_x96, ref_sqrt)
        tolerance = self.config.pool_price_tolerance_x64(position.pool_id)
        if deviation > tolerance:
            logger.warning(
                "기준 가격 편차 초과: pool=%s deviation_x64=%s tolerance_x64=%s",
                position.pool_id, deviation, tolerance
            )
            raise OracleDeviation(
                f"pool 가격과 기준 가격의 차이({deviation})가 허용치({tolerance})를 초과합니다"
            )

        sqrt_lower, sqrt_upper = get_sqrt_ratios_for_range(position.tick_lower, position.tick_upper)
        amount0, amount1 = amounts_for_liquidity(ref_sqrt, sqrt_lower, sqrt_upper, position.liquidity)

        # 수수료는 pool의 실제 틱 기준으로 누적됨
        fees0, fees1 = self.fees.uncollected_fees(position, pool_state)

        value_x96 = (amount0 + fees0) * price0_x96 + (amount1 + fees1) * price1_x96

        return Breakdown(
            liquidity=position.liquidity,
            amount0=amount0,
            amount1=amount1,
            fees0=fees0,
            fees1=fees1,
            pool_sqrt_price_x96=pool_state.sqrt_price_x96,
            reference_sqrt_price_x96=ref_sqrt,
            price_deviation_x64=deviation,
            value_x96=value_x96,
        )
