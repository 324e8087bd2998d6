"""
Fee Math - 백서 기반 수수료 계산

Uniswap V3 백서 Section 6.3, 6.4의 공식을 정확하게 구현.
온체인 컨트랙트와 동일한 정밀도의 수수료 계산.

References:
- 백서 Section 6.3: Tick-Indexed State (feeGrowthOutside)
- 백서 Section 6.4.1: Position-Indexed State (uncollected fees)
- Uniswap V3 Core: contracts/libraries/Tick.sol (getFeeGrowthInside)

핵심 공식:
    f_a(i) = f_g - f_o(i)  if i_c >= i else f_o(i)     # 틱 i 위 수수료
    f_b(i) = f_o(i)        if i_c >= i else f_g - f_o(i) # 틱 i 아래 수수료
    f_r = f_g - f_b(i_l) - f_a(i_u)                     # 범위 내 수수료
    f_u = l × (f_r(t_1) - f_r(t_0)) / 2^128 + owed      # 미수령 수수료

경계 처리:
    i_c == i_l 이면 하한 경계 "위"로 취급 (f_b = f_o)
    i_c == i_u 이면 상한 경계 이상으로 취급 (f_a = f_g - f_o)
    틱이 경계를 넘을 때 pool이 f_o를 f_g - f_o로 뒤집으므로 f_r은 연속입니다.
"""

from typing import Tuple

from ..constants import Q128
from ..errors import InconsistentFeeState
from ..data.types import PoolState, PositionRecord, TickBoundary
from .fixed_point import mul_div

_MOD_256 = 2 ** 256


def fee_growth_above(
    tick_idx: int,
    current_tick: int,
    fee_growth_global: int,
    fee_growth_outside: int
) -> int:
    """틱 위에서 발생한 수수료 성장률 (f_a)

    백서 Section 6.3 공식:
        f_a(i) = f_g - f_o(i)  if i_c >= i
        f_a(i) = f_o(i)        if i_c < i
    """
    if current_tick >= tick_idx:
        return (fee_growth_global - fee_growth_outside) % _MOD_256
    return fee_growth_outside


def fee_growth_below(
    tick_idx: int,
    current_tick: int,
    fee_growth_global: int,
    fee_growth_outside: int
) -> int:
    """틱 아래에서 발생한 수수료 성장률 (f_b)

    백서 Section 6.3 공식:
        f_b(i) = f_o(i)        if i_c >= i
        f_b(i) = f_g - f_o(i)  if i_c < i
    """
    if current_tick >= tick_idx:
        return fee_growth_outside
    return (fee_growth_global - fee_growth_outside) % _MOD_256


def fee_growth_inside(
    tick_lower: int,
    tick_upper: int,
    current_tick: int,
    fee_growth_global: int,
    fee_growth_outside_lower: int,
    fee_growth_outside_upper: int
) -> int:
    """범위 내 fee growth 계산 (f_r)

    백서 Section 6.3 공식:
        f_r = f_g - f_b(i_l) - f_a(i_u)

    누적값은 uint256 랩어라운드 연산이므로 결과도 2^256 모듈러로 반환합니다.
    두 시점의 f_r 차이만 의미가 있습니다.

    Args:
        tick_lower: 하한 틱 (i_l)
        tick_upper: 상한 틱 (i_u)
        current_tick: 현재 틱 (i_c)
        fee_growth_global: 전역 fee growth (f_g)
        fee_growth_outside_lower: 하한 틱의 fee growth outside (f_o(i_l))
        fee_growth_outside_upper: 상한 틱의 fee growth outside (f_o(i_u))

    Returns:
        범위 내 fee growth (f_r)
    """
    f_b = fee_growth_below(tick_lower, current_tick, fee_growth_global, fee_growth_outside_lower)
    f_a = fee_growth_above(tick_upper, current_tick, fee_growth_global, fee_growth_outside_upper)
    return (fee_growth_global - f_b - f_a) % _MOD_256


def fee_growth_inside_pair(
    pool: PoolState,
    lower: TickBoundary,
    upper: TickBoundary,
    tick_lower: int,
    tick_upper: int
) -> Tuple[int, int]:
    """두 토큰의 범위 내 fee growth (f_r,0, f_r,1)"""
    inside0 = fee_growth_inside(
        tick_lower, tick_upper, pool.tick,
        pool.fee_growth_global_0_x128,
        lower.fee_growth_outside_0_x128,
        upper.fee_growth_outside_0_x128
    )
    inside1 = fee_growth_inside(
        tick_lower, tick_upper, pool.tick,
        pool.fee_growth_global_1_x128,
        lower.fee_growth_outside_1_x128,
        upper.fee_growth_outside_1_x128
    )
    return inside0, inside1


def calculate_uncollected_fees(
    liquidity: int,
    fee_growth_inside_current: int,
    fee_growth_inside_last: int
) -> int:
    """새로 쌓인 미수령 수수료 (토큰 최소 단위)

    백서 Section 6.4.1 공식:
        f_u = l × (f_r(t_1) - f_r(t_0)) / 2^128

    Raises:
        InconsistentFeeState: 스냅샷이 현재 값보다 앞서 있는 경우
    """
    fee_growth_delta = fee_growth_inside_current - fee_growth_inside_last
    if fee_growth_delta < 0:
        raise InconsistentFeeState(
            f"fee growth 스냅샷이 역행했습니다: current={fee_growth_inside_current}, "
            f"last={fee_growth_inside_last}"
        )
    return mul_div(fee_growth_delta, liquidity, Q128)


def uncollected_fees(
    position: PositionRecord,
    fee_growth_inside_0: int,
    fee_growth_inside_1: int
) -> Tuple[int, int]:
    """포지션의 전체 미수령 수수료 (새로 쌓인 수수료 + tokensOwed)"""
    fees0 = calculate_uncollected_fees(
        position.liquidity, fee_growth_inside_0, position.fee_growth_inside_0_last_x128
    ) + position.tokens_owed_0
    fees1 = calculate_uncollected_fees(
        position.liquidity, fee_growth_inside_1, position.fee_growth_inside_1_last_x128
    ) + position.tokens_owed_1
    return fees0, fees1
