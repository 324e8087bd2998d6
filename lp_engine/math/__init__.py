"""
Math layer for LP Engine

온체인 수준 정밀도의 수학 함수들:
- fixed_point: 전체 정밀도 mul_div, 정수 제곱근
- tick_math: Tick → sqrtPriceX96 변환
- liquidity_math: 유동성 ↔ 토큰 수량
- fee_math: 백서 기반 수수료 계산
"""

from .fixed_point import (
    mul_div,
    mul_div_rounding_up,
    div_rounding_up,
    integer_sqrt,
    price_x96_from_sqrt,
    amount0_to_amount1,
    amount1_to_amount0,
)
from .tick_math import (
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
    get_sqrt_ratios_for_range,
    check_ticks,
)
from .liquidity_math import (
    get_amount0_delta,
    get_amount1_delta,
    get_liquidity_for_amounts,
    get_amounts_for_liquidity,
)
from .fee_math import (
    fee_growth_inside,
    fee_growth_inside_pair,
    calculate_uncollected_fees,
    uncollected_fees,
)
