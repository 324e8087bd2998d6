"""
Position Engine - 검증된 자동 복리와 포지션 평가

진입점:
- validated_auto_compound: 수수료 정산 → TWAP 검증 → 비율 스왑 → 재예치 → 보상 분배
- value_position: 기준 가격으로 포지션 평가
- plan_rebalance_swap: 검증된 가격으로 스왑 계획만 계산
- withdraw_balance: 원장 잔액 출금

모든 진입점은 하나의 원자적 작업 단위로 실행됩니다. 검증 실패나 불변식 위반이 발생하면
원장(및 unit_of_work가 주어지면 외부 상태)의 변경이 모두 되돌려집니다.
외부 호출이 있는 진입점은 재진입 가드로 보호됩니다.
"""

import functools
import logging
from contextlib import nullcontext
from typing import Callable, ContextManager, Optional, Tuple

from ..config import EngineConfig, settings
from ..constants import MAX_TWAP_TICK_DIFFERENCE, MIN_TWAP_SECONDS, Q64, UINT128_MAX
from ..data.interfaces import Custody, PriceSource, SwapExecutor, TokenVault
from ..data.types import (
    Breakdown,
    CompoundResult,
    PoolState,
    PositionRecord,
    RewardConversion,
    SwapPlan,
)
from ..errors import InvariantViolation, ReentrancyError
from ..math.fixed_point import amount0_to_amount1, amount1_to_amount0, mul_div
from ..math.tick_math import get_sqrt_ratios_for_range
from ..oracle.price_guard import PriceGuard, min_acceptable_output, require_min_output
from ..oracle.tick_oracle import TickOracle
from .ledger import RewardLedger, max_compound_amount, reward_fee, split_reward
from .swap_planner import plan_swap
from .valuation import PositionValuator

logger = logging.getLogger(__name__)


def non_reentrant(method):
    """작업 진행 중 플래그를 확인/설정하고 종료 시 반드시 해제"""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if self._operation_in_progress:
            raise ReentrancyError(f"{method.__name__}: 다른 작업이 진행 중입니다")
        self._operation_in_progress = True
        try:
            return method(self, *args, **kwargs)
        finally:
            self._operation_in_progress = False

    return wrapper


class PositionEngine:
    """집중 유동성 포지션 관리 엔진

    사용법:
        engine = PositionEngine(price_source, custody, swap_executor, vault, config)
        result = engine.validated_auto_compound(position_id, caller="0xabc...")
    """

    def __init__(
        self,
        price_source: PriceSource,
        custody: Custody,
        swap_executor: SwapExecutor,
        vault: TokenVault,
        config: Optional[EngineConfig] = None,
        ledger: Optional[RewardLedger] = None,
        unit_of_work: Optional[Callable[[], ContextManager]] = None
    ):
        """
        Args:
            price_source: pool 가격 상태 소스
            custody: 포지션 보관자
            swap_executor: 외부 스왑 실행기
            vault: 엔진 보유 토큰 잔액
            config: 엔진 파라미터. None이면 환경 변수에서 로드
            ledger: 보상 원장. None이면 새로 생성
            unit_of_work: 외부 상태까지 묶는 트랜잭션 컨텍스트 팩토리 (예: InMemoryChain.transaction)
        """
        self.price_source = price_source
        self.custody = custody
        self.swap_executor = swap_executor
        self.vault = vault
        self.config = config or settings.engine_config()
        self.ledger = ledger or RewardLedger()
        self.oracle = TickOracle(price_source)
        self.guard = PriceGuard(self.oracle)
        self.valuator = PositionValuator(price_source, self.config)
        self.fees = self.valuator.fees
        self._unit_of_work = unit_of_work or nullcontext
        self._operation_in_progress = False

    def _resolve_oracle_params(
        self,
        window_seconds: Optional[int],
        max_deviation_ticks: Optional[int]
    ) -> Tuple[int, int]:
        window = self.config.twap_seconds if window_seconds is None else window_seconds
        max_deviation = (
            self.config.max_twap_tick_difference if max_deviation_ticks is None else max_deviation_ticks
        )
        if window < MIN_TWAP_SECONDS:
            raise ValueError(f"TWAP 윈도우는 {MIN_TWAP_SECONDS}초 이상이어야 합니다: {window}")
        if not 0 <= max_deviation <= MAX_TWAP_TICK_DIFFERENCE:
            raise ValueError(
                f"최대 틱 편차는 0 ~ {MAX_TWAP_TICK_DIFFERENCE} 범위여야 합니다: {max_deviation}"
            )
        return window, max_deviation

    def _validated_pool_state(
        self,
        position: PositionRecord,
        window_seconds: Optional[int],
        max_deviation_ticks: Optional[int]
    ) -> PoolState:
        window, max_deviation = self._resolve_oracle_params(window_seconds, max_deviation_ticks)
        pool_state = self.price_source.current_state(position.pool_id)
        self.guard.validate(position.pool_id, pool_state.tick, window, max_deviation)
        return pool_state

    def uncollected_fees(self, position_id: int) -> Tuple[int, int]:
        """포지션의 현재 미수령 수수료 (읽기 전용)"""
        return self.fees.uncollected_fees(self.custody.position_info(position_id))

    def value_position(self, position_id: int, price0_x96: int, price1_x96: int) -> Breakdown:
        """기준 가격(공통 견적 단위, Q96)으로 포지션 평가"""
        position = self.custody.position_info(position_id)
        return self.valuator.breakdown(position, price0_x96, price1_x96)

    def plan_rebalance_swap(
        self,
        position_id: int,
        amount0: int,
        amount1: int,
        reward_conversion: RewardConversion = RewardConversion.NONE,
        caller: Optional[str] = None,
        window_seconds: Optional[int] = None,
        max_deviation_ticks: Optional[int] = None
    ) -> SwapPlan:
        """TWAP 검증 후 (amount0, amount1)을 포지션 범위 비율로 맞추는 스왑 계획

        caller가 소유자가 아니면 보상 비율을 반영합니다.
        """
        position = self.custody.position_info(position_id)
        pool_state = self._validated_pool_state(position, window_seconds, max_deviation_ticks)
        total_reward_x64 = self._total_reward_for(position_id, caller)
        sqrt_lower, sqrt_upper = get_sqrt_ratios_for_range(position.tick_lower, position.tick_upper)
        return plan_swap(
            amount0, amount1, pool_state.sqrt_price_x96, sqrt_lower, sqrt_upper,
            reward_conversion, total_reward_x64
        )

    def _total_reward_for(self, position_id: int, caller: Optional[str]) -> int:
        if caller is None or caller == self.custody.owner_of(position_id):
            return 0
        return self.config.total_reward_x64

    @non_reentrant
    def validated_auto_compound(
        self,
        position_id: int,
        caller: str,
        reward_conversion: RewardConversion = RewardConversion.NONE,
        window_seconds: Optional[int] = None,
        max_deviation_ticks: Optional[int] = None,
        do_swap: bool = True,
        route: bytes = b""
    ) -> CompoundResult:
        """수수료를 포지션에 재예치

        소유자가 아닌 호출자가 실행하면 재예치한 수량의 total_reward_x64 비율을 보상으로 떼어
        호출자와 프로토콜에 나눕니다. 소유자 본인 실행은 전액 재예치합니다.
        남은 토큰은 소유자 원장 잔액으로 기록되어 다음 복리에 포함됩니다.

        Args:
            position_id: 포지션 ID
            caller: 실행 계정
            reward_conversion: 보상 수령 토큰 (NONE이면 두 토큰 비례)
            window_seconds: TWAP 윈도우 (None이면 설정값)
            max_deviation_ticks: 최대 틱 편차 (None이면 설정값)
            do_swap: 범위 비율로 맞추는 스왑 실행 여부
            route: 스왑 실행기에 그대로 전달되는 경로 데이터

        Returns:
            CompoundResult(호출자 보상 token0/token1, 재예치 token0/token1)

        Raises:
            InsufficientHistory, PriceDeviationExceeded, SlippageExceeded: 검증 실패
            InconsistentFeeState, Overflow: 불변식 위반
        """
        position = self.custody.position_info(position_id)
        owner = self.custody.owner_of(position_id)
        is_owner = caller == owner
        total_reward_x64 = 0 if is_owner else self.config.total_reward_x64
        token0, token1 = position.token0, position.token1

        with self._unit_of_work(), self.ledger.transaction():
            pool_state = self._validated_pool_state(position, window_seconds, max_deviation_ticks)

            collected0, collected1 = self.custody.settle_and_withdraw(
                position_id, 0, 0, 0, UINT128_MAX, UINT128_MAX
            )
            amount0 = collected0 + self.ledger.balance_of(owner, token0)
            amount1 = collected1 + self.ledger.balance_of(owner, token1)

            if amount0 == 0 and amount1 == 0:
                logger.info("복리할 수량 없음: position=%s", position_id)
                return CompoundResult(0, 0, 0, 0)

            sqrt_price_x96 = pool_state.sqrt_price_x96
            reward_conversion = reward_conversion if total_reward_x64 > 0 else RewardConversion.NONE

            if do_swap:
                sqrt_lower, sqrt_upper = get_sqrt_ratios_for_range(position.tick_lower, position.tick_upper)
                plan = plan_swap(
                    amount0, amount1, pool_state.sqrt_price_x96, sqrt_lower, sqrt_upper,
                    reward_conversion, total_reward_x64
                )
                if plan.amount_in > 0:
                    amount0, amount1 = self._execute_swap(
                        position, pool_state, plan, amount0, amount1, route
                    )

            max_add0, max_add1 = self._max_add_amounts(
                amount0, amount1, sqrt_price_x96, reward_conversion, total_reward_x64
            )
            added0 = added1 = 0
            if max_add0 > 0 or max_add1 > 0:
                _, added0, added1 = self.custody.add_liquidity(position_id, max_add0, max_add1, 0, 0)
            if added0 > max_add0 or added1 > max_add1:
                raise InvariantViolation(
                    f"보관자가 허용량보다 많이 사용했습니다: ({added0}, {added1}) > ({max_add0}, {max_add1})"
                )

            fee0, fee1 = self._reward_fees(
                amount0 - added0, amount1 - added1, added0, added1,
                sqrt_price_x96, reward_conversion, total_reward_x64
            )

            # 소유자 잔액을 먼저 기록해야 보상 적립이 그 위에 더해짐
            self.ledger.set_balance(owner, token0, amount0 - added0 - fee0)
            self.ledger.set_balance(owner, token1, amount1 - added1 - fee1)

            reward0 = reward1 = 0
            if not is_owner:
                reward0 = self._distribute(caller, token0, fee0)
                reward1 = self._distribute(caller, token1, fee1)

        logger.info(
            "자동 복리 완료: position=%s caller=%s added=(%s, %s) reward=(%s, %s)",
            position_id, caller, added0, added1, reward0, reward1
        )
        return CompoundResult(reward0, reward1, added0, added1)

    def _execute_swap(
        self,
        position: PositionRecord,
        pool_state: PoolState,
        plan: SwapPlan,
        amount0: int,
        amount1: int,
        route: bytes
    ) -> Tuple[int, int]:
        """스왑 실행 후 금고 잔액 변화로 결과 검증"""
        if plan.sell_token0:
            token_in, token_out = position.token0, position.token1
        else:
            token_in, token_out = position.token1, position.token0

        amount_out_min = min_acceptable_output(
            plan.amount_in, pool_state.sqrt_price_x96, plan.sell_token0,
            self.config.max_price_difference_x64
        )

        balance_in = self.vault.balance_of(token_in)
        balance_out = self.vault.balance_of(token_out)
        reported_spent, reported_received = self.swap_executor.swap(
            token_in, token_out, plan.amount_in, amount_out_min, route
        )
        spent = balance_in - self.vault.balance_of(token_in)
        received = self.vault.balance_of(token_out) - balance_out

        if (reported_spent, reported_received) != (spent, received):
            logger.warning(
                "스왑 실행기 보고값 불일치: reported=(%s, %s) actual=(%s, %s)",
                reported_spent, reported_received, spent, received
            )
        if spent < 0 or spent > plan.amount_in:
            raise InvariantViolation(f"스왑 사용량이 허용량을 벗어났습니다: {spent} (허용 {plan.amount_in})")
        require_min_output(received, amount_out_min)

        if plan.sell_token0:
            return amount0 - spent, amount1 + received
        return amount0 + received, amount1 - spent

    @staticmethod
    def _max_add_amounts(
        amount0: int,
        amount1: int,
        sqrt_price_x96: int,
        reward_conversion: RewardConversion,
        total_reward_x64: int
    ) -> Tuple[int, int]:
        """보상을 떼고도 남도록 재예치할 최대 수량"""
        if total_reward_x64 == 0:
            return amount0, amount1
        if reward_conversion == RewardConversion.TOKEN_0:
            value0 = amount0 + amount1_to_amount0(amount1, sqrt_price_x96)
            reserve0 = mul_div(value0, total_reward_x64, Q64 + total_reward_x64)
            return max(amount0 - reserve0, 0), amount1
        if reward_conversion == RewardConversion.TOKEN_1:
            value1 = amount1 + amount0_to_amount1(amount0, sqrt_price_x96)
            reserve1 = mul_div(value1, total_reward_x64, Q64 + total_reward_x64)
            return amount0, max(amount1 - reserve1, 0)
        return (
            max_compound_amount(amount0, total_reward_x64),
            max_compound_amount(amount1, total_reward_x64),
        )

    @staticmethod
    def _reward_fees(
        leftover0: int,
        leftover1: int,
        added0: int,
        added1: int,
        sqrt_price_x96: int,
        reward_conversion: RewardConversion,
        total_reward_x64: int
    ) -> Tuple[int, int]:
        """재예치 수량 기준 보상 (남은 잔액을 넘지 않음)"""
        if total_reward_x64 == 0:
            return 0, 0
        if reward_conversion == RewardConversion.TOKEN_0:
            added_value0 = added0 + amount1_to_amount0(added1, sqrt_price_x96)
            return min(reward_fee(added_value0, total_reward_x64), leftover0), 0
        if reward_conversion == RewardConversion.TOKEN_1:
            added_value1 = added1 + amount0_to_amount1(added0, sqrt_price_x96)
            return 0, min(reward_fee(added_value1, total_reward_x64), leftover1)
        return (
            min(reward_fee(added0, total_reward_x64), leftover0),
            min(reward_fee(added1, total_reward_x64), leftover1),
        )

    def _distribute(self, caller: str, token: str, fee: int) -> int:
        caller_share, protocol_share = split_reward(
            fee, self.config.total_reward_x64, self.config.compounder_reward_x64
        )
        self.ledger.credit(caller, token, caller_share)
        self.ledger.credit(self.config.protocol_account, token, protocol_share)
        return caller_share

    @non_reentrant
    def withdraw_balance(self, account: str, token: str, to: str, amount: Optional[int] = None) -> int:
        """원장 잔액을 금고에서 출금 (amount가 None이면 전액)

        Raises:
            InsufficientBalance: 잔액보다 큰 출금
        """
        if amount is None:
            amount = self.ledger.balance_of(account, token)
        with self._unit_of_work(), self.ledger.transaction():
            self.ledger.debit(account, token, amount)
            if amount > 0:
                self.vault.transfer(token, to, amount)
        logger.info("잔액 출금: account=%s token=%s to=%s amount=%s", account, token, to, amount)
        return amount
