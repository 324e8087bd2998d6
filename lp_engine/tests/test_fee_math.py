"""
Fee Math 테스트

백서 Section 6.3, 6.4 기반 수수료 계산 함수들을 테스트합니다.
"""

import pytest
from hypothesis import given, strategies as st

from ..math.fee_math import (
    fee_growth_above,
    fee_growth_below,
    fee_growth_inside,
    fee_growth_inside_pair,
    calculate_uncollected_fees,
    uncollected_fees
)
from ..constants import Q128
from ..data.types import PoolState, PositionRecord, TickBoundary
from ..errors import InconsistentFeeState

uint256 = st.integers(min_value=0, max_value=2**256 - 1)


class TestFeeGrowthAbove:
    """fee_growth_above 테스트 (f_a)"""

    def test_current_tick_above_target(self):
        """현재 틱이 타겟 틱 위에 있을 때: f_a = f_g - f_o"""
        result = fee_growth_above(tick_idx=100, current_tick=150,
                                  fee_growth_global=1000, fee_growth_outside=300)
        assert result == 700

    def test_current_tick_at_target(self):
        """현재 틱이 타겟 틱과 같을 때: f_a = f_g - f_o"""
        result = fee_growth_above(tick_idx=100, current_tick=100,
                                  fee_growth_global=1000, fee_growth_outside=300)
        assert result == 700

    def test_current_tick_below_target(self):
        """현재 틱이 타겟 틱 아래에 있을 때: f_a = f_o"""
        result = fee_growth_above(tick_idx=100, current_tick=50,
                                  fee_growth_global=1000, fee_growth_outside=300)
        assert result == 300


class TestFeeGrowthBelow:
    """fee_growth_below 테스트 (f_b)"""

    def test_current_tick_above_target(self):
        """현재 틱이 타겟 틱 위에 있을 때: f_b = f_o"""
        result = fee_growth_below(tick_idx=100, current_tick=150,
                                  fee_growth_global=1000, fee_growth_outside=300)
        assert result == 300

    def test_current_tick_at_target(self):
        """현재 틱이 타겟 틱과 같을 때: f_b = f_o"""
        result = fee_growth_below(tick_idx=100, current_tick=100,
                                  fee_growth_global=1000, fee_growth_outside=300)
        assert result == 300

    def test_current_tick_below_target(self):
        """현재 틱이 타겟 틱 아래에 있을 때: f_b = f_g - f_o"""
        result = fee_growth_below(tick_idx=100, current_tick=50,
                                  fee_growth_global=1000, fee_growth_outside=300)
        assert result == 700

    def test_wraparound(self):
        """f_o > f_g 이면 2^256 모듈러"""
        result = fee_growth_below(tick_idx=100, current_tick=50,
                                  fee_growth_global=1, fee_growth_outside=2)
        assert result == 2**256 - 1


class TestFeeGrowthInside:
    """fee_growth_inside 테스트 (f_r)

    f_r = f_g - f_b(i_l) - f_a(i_u)
    """

    def test_current_tick_in_range(self):
        """현재 틱이 범위 내에 있을 때"""
        result = fee_growth_inside(
            tick_lower=100, tick_upper=200, current_tick=150,
            fee_growth_global=1000,
            fee_growth_outside_lower=100,
            fee_growth_outside_upper=200
        )
        # f_r = 1000 - 100 - 200
        assert result == 700

    def test_current_tick_below_range(self):
        """현재 틱이 범위 아래에 있을 때"""
        result = fee_growth_inside(
            tick_lower=100, tick_upper=200, current_tick=50,
            fee_growth_global=1000,
            fee_growth_outside_lower=100,
            fee_growth_outside_upper=200
        )
        # f_b(100) = 900, f_a(200) = 200 → -100 (2^256 래핑)
        assert result == 2**256 - 100

    def test_current_tick_above_range(self):
        """현재 틱이 범위 위에 있을 때"""
        result = fee_growth_inside(
            tick_lower=100, tick_upper=200, current_tick=250,
            fee_growth_global=1000,
            fee_growth_outside_lower=100,
            fee_growth_outside_upper=200
        )
        # f_b(100) = 100, f_a(200) = 800
        assert result == 100

    def test_current_tick_at_upper_is_above(self):
        """현재 틱 == 상한이면 범위 위로 취급"""
        at_upper = fee_growth_inside(100, 200, 200, 1000, 100, 200)
        above = fee_growth_inside(100, 200, 250, 1000, 100, 200)
        assert at_upper == above

    @given(
        fee_growth_global=uint256,
        outside_lower=uint256,
        outside_upper=uint256
    )
    def test_continuous_when_crossing_lower(self, fee_growth_global, outside_lower, outside_upper):
        """하한을 위로 넘을 때 pool이 f_o를 뒤집으면 f_r은 변하지 않음"""
        before = fee_growth_inside(100, 200, 99, fee_growth_global, outside_lower, outside_upper)
        flipped = (fee_growth_global - outside_lower) % 2**256
        after = fee_growth_inside(100, 200, 100, fee_growth_global, flipped, outside_upper)
        assert before == after

    @given(
        fee_growth_global=uint256,
        outside_lower=uint256,
        outside_upper=uint256
    )
    def test_continuous_when_crossing_upper(self, fee_growth_global, outside_lower, outside_upper):
        """상한을 위로 넘을 때 pool이 f_o를 뒤집으면 f_r은 변하지 않음"""
        before = fee_growth_inside(100, 200, 199, fee_growth_global, outside_lower, outside_upper)
        flipped = (fee_growth_global - outside_upper) % 2**256
        after = fee_growth_inside(100, 200, 200, fee_growth_global, outside_lower, flipped)
        assert before == after

    def test_pair(self):
        """두 토큰을 각각 계산"""
        pool = PoolState(sqrt_price_x96=2**96, tick=150,
                         fee_growth_global_0_x128=1000, fee_growth_global_1_x128=5000)
        lower = TickBoundary(100, 1000)
        upper = TickBoundary(200, 2000)
        assert fee_growth_inside_pair(pool, lower, upper, 100, 200) == (700, 2000)


class TestCalculateUncollectedFees:
    """calculate_uncollected_fees 테스트 (f_u)

    f_u = l × (f_r(t_1) - f_r(t_0)) / 2^128
    """

    def test_basic_calculation(self):
        """기본 수수료 계산"""
        liquidity = 1000000
        result = calculate_uncollected_fees(liquidity, 500 * Q128, 100 * Q128)
        assert result == liquidity * 400

    def test_floor(self):
        """Q128 나눗셈은 내림"""
        assert calculate_uncollected_fees(3, Q128 // 2, 0) == 1

    def test_zero_delta(self):
        """같은 스냅샷이면 새 수수료 없음"""
        f_r = 100 * Q128
        assert calculate_uncollected_fees(1000000, f_r, f_r) == 0

    def test_snapshot_ahead_of_current(self):
        """스냅샷이 현재 값보다 크면 불변식 위반"""
        with pytest.raises(InconsistentFeeState):
            calculate_uncollected_fees(1000000, 100 * Q128, 200 * Q128)


class TestPositionUncollectedFees:
    """포지션 단위 uncollected_fees 테스트"""

    def test_includes_tokens_owed(self):
        position = PositionRecord(
            pool_id="pool", token0="A", token1="B", fee=3000,
            tick_lower=100, tick_upper=200, liquidity=10,
            fee_growth_inside_0_last_x128=Q128,
            fee_growth_inside_1_last_x128=0,
            tokens_owed_0=7, tokens_owed_1=3
        )
        assert uncollected_fees(position, 3 * Q128, 5 * Q128) == (27, 53)

    def test_position_without_liquidity(self):
        position = PositionRecord(
            pool_id="pool", token0="A", token1="B", fee=3000,
            tick_lower=100, tick_upper=200, liquidity=0, tokens_owed_0=4
        )
        assert uncollected_fees(position, 9 * Q128, 9 * Q128) == (4, 0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
