"""
Fee Accountant - 포지션 미수령 수수료

가격 소스에서 전역/경계 fee growth를 새로 읽어 fee_math 공식에 적용합니다.
"""

from typing import Optional, Tuple

from ..data.interfaces import PriceSource
from ..data.types import PoolState, PositionRecord
from ..math.fee_math import fee_growth_inside_pair, uncollected_fees


class FeeAccountant:
    """포지션 수수료 계산기

    사용법:
        accountant = FeeAccountant(price_source)
        fees0, fees1 = accountant.uncollected_fees(position)
    """

    def __init__(self, price_source: PriceSource):
        self.price_source = price_source

    def fee_growth_inside(
        self,
        pool_id: str,
        tick_lower: int,
        tick_upper: int,
        pool_state: Optional[PoolState] = None
    ) -> Tuple[int, int]:
        """현재 범위 내 fee growth (f_r,0, f_r,1)

        Args:
            pool_id: Pool 주소
            tick_lower: 하한 틱
            tick_upper: 상한 틱
            pool_state: 같은 작업 안에서 이미 읽은 pool 상태 (없으면 새로 조회)
        """
        if pool_state is None:
            pool_state = self.price_source.current_state(pool_id)
        lower = self.price_source.tick_boundary_growth(pool_id, tick_lower)
        upper = self.price_source.tick_boundary_growth(pool_id, tick_upper)
        return fee_growth_inside_pair(pool_state, lower, upper, tick_lower, tick_upper)

    def uncollected_fees(
        self,
        position: PositionRecord,
        pool_state: Optional[PoolState] = None
    ) -> Tuple[int, int]:
        """미수령 수수료 (fees0, fees1). 스냅샷이 역행하면 InconsistentFeeState"""
        inside0, inside1 = self.fee_growth_inside(
            position.pool_id, position.tick_lower, position.tick_upper, pool_state
        )
        return uncollected_fees(position, inside0, inside1)
