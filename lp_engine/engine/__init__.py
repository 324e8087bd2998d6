"""
Engine layer for LP Engine

- fees: FeeAccountant (미수령 수수료)
- valuation: PositionValuator (기준 가격 평가)
- swap_planner: 범위 비율 스왑 계획
- ledger: RewardLedger (보상 원장, 보상 분할)
- compounder: PositionEngine (진입점)
"""

from .fees import FeeAccountant
from .valuation import (
    PositionValuator,
    amounts_for_liquidity,
    reference_sqrt_price_x96,
    price_deviation_x64,
)
from .swap_planner import plan_swap
from .ledger import RewardLedger, split_reward, reward_fee, max_compound_amount
from .compounder import PositionEngine, non_reentrant
