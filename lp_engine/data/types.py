"""
LP Engine 데이터 타입 정의

가격 소스, 포지션 보관자(custody)와 엔진 사이에서 오가는 구조를 dataclass로 정의.
모든 숫자 필드는 온체인 정밀도를 위해 int 타입 사용.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


@dataclass(frozen=True)
class PoolState:
    """Pool Global State (백서 Section 6.2, Table 1)

    - sqrtPriceX96: 현재 √가격 (Q96 인코딩)
    - tick: 현재 틱 인덱스 (i_c)
    - feeGrowthGlobal0X128: token0 단위유동성당 누적수수료 (f_g,0)
    - feeGrowthGlobal1X128: token1 단위유동성당 누적수수료 (f_g,1)
    """
    sqrt_price_x96: int
    tick: int
    fee_growth_global_0_x128: int
    fee_growth_global_1_x128: int


@dataclass(frozen=True)
class TickBoundary:
    """틱 경계의 fee growth outside (f_o,0, f_o,1)"""
    fee_growth_outside_0_x128: int
    fee_growth_outside_1_x128: int


@dataclass(frozen=True)
class PositionRecord:
    """Position-Indexed State (백서 Section 6.4, Table 3)

    feeGrowthInside*LastX128은 마지막 정산(collect) 시점의 스냅샷이며
    정산 사이에는 앞으로만 움직입니다.
    """
    pool_id: str
    token0: str
    token1: str
    fee: int
    tick_lower: int  # i_l
    tick_upper: int  # i_u
    liquidity: int  # l
    fee_growth_inside_0_last_x128: int = 0  # f_r,0(t_0)
    fee_growth_inside_1_last_x128: int = 0  # f_r,1(t_0)
    tokens_owed_0: int = 0
    tokens_owed_1: int = 0


class TwapObservation(NamedTuple):
    """TWAP 관측 결과"""
    tick_cumulative_now: int  # secondsAgo = 0
    tick_cumulative_then: int  # secondsAgo = window
    window_seconds: int
    average_tick: int


class RewardConversion(Enum):
    """보상을 어떤 토큰으로 받을지"""
    NONE = 0
    TOKEN_0 = 1
    TOKEN_1 = 2


@dataclass(frozen=True)
class SwapPlan:
    """리밸런싱 스왑 계획

    delta0는 token0 단위의 교환량, amount_in은 실제 판매 토큰 단위입니다.
    reward_amount_0/1은 보상 변환 정책에 따라 따로 떼어 둘 예상 보상액입니다.
    """
    sell_token0: bool
    amount_in: int
    delta0: int
    price_x96: int
    reward_amount_0: int = 0
    reward_amount_1: int = 0

    @property
    def is_empty(self) -> bool:
        return self.amount_in == 0


@dataclass(frozen=True)
class Breakdown:
    """기준 가격으로 평가한 포지션 구성"""
    liquidity: int
    amount0: int
    amount1: int
    fees0: int
    fees1: int
    pool_sqrt_price_x96: int
    reference_sqrt_price_x96: int
    price_deviation_x64: int
    value_x96: int  # 기준 견적 단위 가치 (Q96)

    @property
    def total0(self) -> int:
        return self.amount0 + self.fees0

    @property
    def total1(self) -> int:
        return self.amount1 + self.fees1


class CompoundResult(NamedTuple):
    """자동 복리 결과 (호출자 보상, 재예치 수량)"""
    reward0: int
    reward1: int
    added0: int
    added1: int


class LedgerEvent(NamedTuple):
    """원장 변동 이벤트 (delta > 0: 입금, delta < 0: 출금)"""
    account: str
    token: str
    delta: int

    @property
    def is_add(self) -> bool:
        return self.delta > 0
