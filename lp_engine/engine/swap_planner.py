"""
Swap Planner - 범위 비율 맞추기 스왑 계산

보유 수량 (a0, a1)을 현재 가격에서 포지션 범위가 요구하는 비율로 맞추기 위해
어느 토큰을 얼마나 팔아야 하는지 계산합니다.

핵심 공식 (r = 범위 비율 amount0/amount1, p = token1/token0 가격):
    (a0 - d) / (a1 + d·p) = r
    d = (a0 - r·a1) / (1 + r·p)          # d > 0: token0 판매, d < 0: token1 판매

보상 분리:
    보상을 특정 토큰으로 받으면 그 토큰을 보상액만큼 남겨야 하므로 d를 보정합니다.
    R = 가치 × T / (1 + T)      (복리 추가액의 T 비율이 보상)
    token0 보상: d' = d - R0 / (1 + r·p)
    token1 보상: d' = d + r·R1 / (1 + r·p)
    보정량이 원래 d보다 크면 판매 방향이 뒤집힙니다.

가격 환산은 priceX96 대신 sqrtPriceX96로 두 단계에 나누어 계산합니다.
priceX96는 약 -665000 틱 아래에서 0으로 내림되기 때문입니다.
"""

from typing import Tuple

from ..constants import Q64, Q96
from ..data.types import RewardConversion, SwapPlan
from ..errors import DivisionByZero
from ..math.fixed_point import (
    amount0_to_amount1,
    amount1_to_amount0,
    mul_div,
    price_x96_from_sqrt,
)
from ..math.liquidity_math import get_amounts_for_liquidity


def _ideal_ratio(
    sqrt_price_x96: int,
    sqrt_price_lower_x96: int,
    sqrt_price_upper_x96: int
) -> Tuple[int, int]:
    # 비율만 필요하므로 유동성 Q96으로 측정
    return get_amounts_for_liquidity(sqrt_price_x96, sqrt_price_lower_x96, sqrt_price_upper_x96, Q96)


def plan_swap(
    amount0: int,
    amount1: int,
    sqrt_price_x96: int,
    sqrt_price_lower_x96: int,
    sqrt_price_upper_x96: int,
    reward_conversion: RewardConversion = RewardConversion.NONE,
    total_reward_x64: int = 0
) -> SwapPlan:
    """리밸런싱 스왑 계획

    Args:
        amount0: 보유 token0
        amount1: 보유 token1
        sqrt_price_x96: 검증된 현재 sqrtPriceX96
        sqrt_price_lower_x96: 범위 하한 sqrtPriceX96
        sqrt_price_upper_x96: 범위 상한 sqrtPriceX96
        reward_conversion: 보상 수령 토큰
        total_reward_x64: 전체 보상 비율 (소유자 본인 실행이면 0)

    Returns:
        SwapPlan (amount_in은 판매 토큰 잔액을 넘지 않음)
    """
    if sqrt_price_x96 == 0:
        raise DivisionByZero("sqrtPriceX96가 0입니다")

    position0, position1 = _ideal_ratio(sqrt_price_x96, sqrt_price_lower_x96, sqrt_price_upper_x96)

    # ratio_x96 = None 은 범위가 전부 token0 (r = ∞)
    if position0 == 0:
        ratio_x96 = 0
        denominator = Q96
        delta_signed = amount0
    elif position1 == 0:
        ratio_x96 = None
        denominator = None
        delta_signed = -amount1_to_amount0(amount1, sqrt_price_x96)
    else:
        ratio_x96 = mul_div(position0, Q96, position1)
        denominator = amount0_to_amount1(ratio_x96, sqrt_price_x96) + Q96
        numerator = amount0 * Q96 - ratio_x96 * amount1
        if numerator >= 0:
            delta_signed = numerator // denominator
        else:
            delta_signed = -((-numerator) // denominator)

    reward_amount_0 = 0
    reward_amount_1 = 0
    if total_reward_x64 > 0 and reward_conversion == RewardConversion.TOKEN_0:
        value0 = amount0 + amount1_to_amount0(amount1, sqrt_price_x96)
        reward_amount_0 = mul_div(value0, total_reward_x64, Q64 + total_reward_x64)
        if ratio_x96 is not None:
            delta_signed -= mul_div(reward_amount_0, Q96, denominator)
    elif total_reward_x64 > 0 and reward_conversion == RewardConversion.TOKEN_1:
        value1 = amount1 + amount0_to_amount1(amount0, sqrt_price_x96)
        reward_amount_1 = mul_div(value1, total_reward_x64, Q64 + total_reward_x64)
        if ratio_x96 is None:
            delta_signed += amount1_to_amount0(reward_amount_1, sqrt_price_x96)
        else:
            delta_signed += mul_div(ratio_x96, reward_amount_1, denominator)

    sell_token0 = delta_signed > 0
    delta0 = abs(delta_signed)

    if sell_token0:
        amount_in = min(delta0, amount0)
    else:
        amount_in = min(amount0_to_amount1(delta0, sqrt_price_x96), amount1)

    return SwapPlan(
        sell_token0=sell_token0,
        amount_in=amount_in,
        delta0=delta0,
        price_x96=price_x96_from_sqrt(sqrt_price_x96),
        reward_amount_0=reward_amount_0,
        reward_amount_1=reward_amount_1,
    )
