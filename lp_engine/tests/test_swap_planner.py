"""
Swap Planner 테스트

범위 비율 맞추기 스왑 방향/수량과 보상 분리 보정을 테스트합니다.
"""

import pytest
from hypothesis import given, strategies as st

from ..engine.swap_planner import plan_swap
from ..constants import Q64, Q96
from ..data.types import RewardConversion
from ..errors import DivisionByZero
from ..math.tick_math import get_sqrt_ratio_at_tick, get_sqrt_ratios_for_range

TOTAL_REWARD_X64 = Q64 // 50


def plan_at_tick(tick, tick_lower, tick_upper, amount0, amount1, **kwargs):
    sqrt_lower, sqrt_upper = get_sqrt_ratios_for_range(tick_lower, tick_upper)
    return plan_swap(amount0, amount1, get_sqrt_ratio_at_tick(tick), sqrt_lower, sqrt_upper, **kwargs)


class TestInRange:
    """현재 가격이 범위 안일 때"""

    def test_sell_token0_half(self):
        """대칭 범위, 가격 1: token0만 보유하면 절반가량 판매"""
        plan = plan_at_tick(0, -100, 100, 1000, 0)
        assert plan.sell_token0
        assert 495 <= plan.amount_in <= 505
        assert plan.price_x96 == Q96

    def test_sell_token1_half(self):
        plan = plan_at_tick(0, -100, 100, 0, 1000)
        assert not plan.sell_token0
        assert 495 <= plan.amount_in <= 505

    def test_balanced_needs_no_swap(self):
        plan = plan_at_tick(0, -100, 100, 1000, 1000)
        assert plan.amount_in <= 1

    def test_nothing_to_swap(self):
        plan = plan_at_tick(0, -100, 100, 0, 0)
        assert plan.is_empty


class TestOutOfRange:
    """현재 가격이 범위 밖일 때"""

    def test_below_range_sells_all_token1(self):
        """가격이 범위 아래: 포지션은 token0만 필요"""
        plan = plan_at_tick(0, 100, 200, 0, 1000)
        assert not plan.sell_token0
        assert plan.amount_in == 1000

    def test_below_range_keeps_token0(self):
        plan = plan_at_tick(0, 100, 200, 1000, 0)
        assert plan.is_empty

    def test_above_range_sells_all_token0(self):
        """가격이 범위 위: 포지션은 token1만 필요"""
        plan = plan_at_tick(0, -200, -100, 1000, 500)
        assert plan.sell_token0
        assert plan.amount_in == 1000
        assert plan.delta0 == 1000


class TestRewardConversion:
    """보상 토큰 지정 시 판매량 보정"""

    def test_reward_token0_flips_direction(self):
        """균형 상태에서 token0 보상을 떼면 token1을 팔아 token0을 확보"""
        plan = plan_at_tick(
            0, -100, 100, 1000, 1000,
            reward_conversion=RewardConversion.TOKEN_0, total_reward_x64=TOTAL_REWARD_X64
        )
        # R0 = 2000 × T / (Q64 + T)
        assert plan.reward_amount_0 == 39
        assert plan.reward_amount_1 == 0
        assert not plan.sell_token0
        assert 15 <= plan.amount_in <= 25

    def test_reward_token1_flips_direction(self):
        plan = plan_at_tick(
            0, -100, 100, 1000, 1000,
            reward_conversion=RewardConversion.TOKEN_1, total_reward_x64=TOTAL_REWARD_X64
        )
        assert plan.reward_amount_1 == 39
        assert plan.sell_token0
        assert 15 <= plan.amount_in <= 25

    def test_reward_token0_reduces_sale(self):
        """범위 위 (token1만 필요): token0 보상만큼 덜 판매"""
        plan = plan_at_tick(
            0, -200, -100, 1000, 0,
            reward_conversion=RewardConversion.TOKEN_0, total_reward_x64=TOTAL_REWARD_X64
        )
        assert plan.sell_token0
        assert plan.amount_in == 1000 - plan.reward_amount_0

    def test_reward_token1_below_range(self):
        """범위 아래 (token0만 필요): token1 보상만큼 덜 판매"""
        plan = plan_at_tick(
            0, 100, 200, 0, 1000,
            reward_conversion=RewardConversion.TOKEN_1, total_reward_x64=TOTAL_REWARD_X64
        )
        assert not plan.sell_token0
        assert plan.amount_in == 1000 - plan.reward_amount_1

    def test_zero_reward_rate_ignores_conversion(self):
        with_conversion = plan_at_tick(
            0, -100, 100, 1000, 0, reward_conversion=RewardConversion.TOKEN_0, total_reward_x64=0
        )
        assert with_conversion == plan_at_tick(0, -100, 100, 1000, 0)


class TestBounds:
    """판매량 상한과 입력 검증"""

    @given(
        amount0=st.integers(min_value=0, max_value=10**30),
        amount1=st.integers(min_value=0, max_value=10**30),
        tick=st.integers(min_value=-5000, max_value=5000),
        conversion=st.sampled_from(list(RewardConversion))
    )
    def test_amount_in_never_exceeds_balance(self, amount0, amount1, tick, conversion):
        plan = plan_at_tick(
            tick, -600, 600, amount0, amount1,
            reward_conversion=conversion, total_reward_x64=TOTAL_REWARD_X64
        )
        if plan.sell_token0:
            assert plan.amount_in <= amount0
        else:
            assert plan.amount_in <= amount1

    def test_far_below_price_one(self):
        """priceX96가 0으로 내림되는 틱에서도 판매량 계산"""
        plan = plan_at_tick(-700000, -700200, -699600, 10**15, 10**15)
        assert plan.price_x96 == 0
        assert not plan.sell_token0
        assert 0 < plan.amount_in <= 10**15

    def test_zero_price(self):
        sqrt_lower, sqrt_upper = get_sqrt_ratios_for_range(-100, 100)
        with pytest.raises(DivisionByZero):
            plan_swap(1000, 0, 0, sqrt_lower, sqrt_upper)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
