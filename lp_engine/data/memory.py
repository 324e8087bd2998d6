"""
인메모리 협력자 구현

시뮬레이션과 테스트용 가격 소스, 포지션 보관자, 스왑 실행기, 금고.
InMemoryChain.transaction()은 블록 안의 모든 상태 변경을 예외 시 되돌려
온체인 트랜잭션 revert와 같은 원자성을 제공합니다.
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..constants import Q64
from ..errors import InsufficientHistory
from ..math.fee_math import fee_growth_inside_pair, uncollected_fees
from ..math.fixed_point import amount0_to_amount1, amount1_to_amount0, mul_div
from ..math.liquidity_math import (
    get_amount0_delta,
    get_amount1_delta,
    get_amounts_for_liquidity,
    get_liquidity_for_amounts,
)
from ..math.tick_math import get_sqrt_ratios_for_range
from .types import PoolState, PositionRecord, TickBoundary

logger = logging.getLogger(__name__)


class InMemoryVault:
    """엔진 보유 토큰 잔액"""

    def __init__(self):
        self.balances: Dict[str, int] = {}
        self.payouts: Dict[Tuple[str, str], int] = {}

    def balance_of(self, token: str) -> int:
        return self.balances.get(token, 0)

    def deposit(self, token: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"입금액은 음수일 수 없습니다: {amount}")
        self.balances[token] = self.balance_of(token) + amount

    def withdraw(self, token: str, amount: int) -> None:
        balance = self.balance_of(token)
        if amount < 0 or amount > balance:
            raise ValueError(f"금고 잔액 부족: token={token}, balance={balance}, amount={amount}")
        self.balances[token] = balance - amount

    def transfer(self, token: str, to: str, amount: int) -> None:
        self.withdraw(token, amount)
        key = (to, token)
        self.payouts[key] = self.payouts.get(key, 0) + amount

    def snapshot(self):
        return dict(self.balances), dict(self.payouts)

    def restore(self, state) -> None:
        self.balances, self.payouts = dict(state[0]), dict(state[1])


class InMemoryPriceSource:
    """Pool 상태와 누적 틱 관측 기록

    관측 기록은 (timestamp, tick_cumulative, tick) 목록이며, 두 관측 사이의 틱은 일정합니다.
    가장 오래된 관측보다 이전 시점을 요청하면 InsufficientHistory를 발생시킵니다.
    """

    def __init__(self, now: int = 0):
        self.now = now
        self._pools: Dict[str, PoolState] = {}
        self._boundaries: Dict[Tuple[str, int], TickBoundary] = {}
        self._observations: Dict[str, List[Tuple[int, int, int]]] = {}

    def add_pool(self, pool_id: str, state: PoolState) -> None:
        self._pools[pool_id] = state
        self._observations[pool_id] = [(self.now, 0, state.tick)]

    def set_state(self, pool_id: str, state: PoolState) -> None:
        """pool 상태 변경 (현재 시각에 관측 기록 추가)"""
        cumulative = self._cumulative_at(pool_id, self.now)
        observations = self._observations[pool_id]
        if observations[-1][0] == self.now:
            observations.pop()
        observations.append((self.now, cumulative, state.tick))
        self._pools[pool_id] = state

    def set_tick_boundary(self, pool_id: str, tick: int, boundary: TickBoundary) -> None:
        self._boundaries[(pool_id, tick)] = boundary

    def advance(self, seconds: int) -> None:
        if seconds < 0:
            raise ValueError("시간은 되돌릴 수 없습니다")
        self.now += seconds

    def current_state(self, pool_id: str) -> PoolState:
        if pool_id not in self._pools:
            raise KeyError(f"Pool을 찾을 수 없습니다: {pool_id}")
        return self._pools[pool_id]

    def tick_boundary_growth(self, pool_id: str, tick: int) -> TickBoundary:
        # 초기화되지 않은 틱은 0
        return self._boundaries.get((pool_id, tick), TickBoundary(0, 0))

    def observe(self, pool_id: str, seconds_agos: Sequence[int]) -> List[int]:
        return [self._cumulative_at(pool_id, self.now - seconds_ago) for seconds_ago in seconds_agos]

    def _cumulative_at(self, pool_id: str, timestamp: int) -> int:
        observations = self._observations[pool_id]
        if timestamp < observations[0][0]:
            raise InsufficientHistory(pool_id, self.now - timestamp)
        for observed_at, cumulative, tick in reversed(observations):
            if observed_at <= timestamp:
                return cumulative + tick * (timestamp - observed_at)
        raise InsufficientHistory(pool_id, self.now - timestamp)

    def snapshot(self):
        return (
            self.now,
            dict(self._pools),
            dict(self._boundaries),
            {pool_id: list(obs) for pool_id, obs in self._observations.items()},
        )

    def restore(self, state) -> None:
        self.now, pools, boundaries, observations = state
        self._pools = dict(pools)
        self._boundaries = dict(boundaries)
        self._observations = {pool_id: list(obs) for pool_id, obs in observations.items()}


class InMemoryCustody:
    """포지션 보관자

    수수료 정산 시 fee growth 스냅샷을 앞으로 옮기고 정산된 수수료를 tokensOwed에 더합니다.
    출금한 토큰은 금고로 들어가고, 유동성 추가에 사용한 토큰은 금고에서 빠져나갑니다.
    """

    def __init__(self, price_source: InMemoryPriceSource, vault: InMemoryVault):
        self.price_source = price_source
        self.vault = vault
        self._positions: Dict[int, PositionRecord] = {}
        self._owners: Dict[int, str] = {}

    def register(self, position_id: int, owner: str, position: PositionRecord) -> None:
        self._positions[position_id] = position
        self._owners[position_id] = owner

    def deregister(self, position_id: int) -> None:
        del self._positions[position_id]
        del self._owners[position_id]

    def owner_of(self, position_id: int) -> str:
        if position_id not in self._owners:
            raise KeyError(f"포지션을 찾을 수 없습니다: {position_id}")
        return self._owners[position_id]

    def position_info(self, position_id: int) -> PositionRecord:
        if position_id not in self._positions:
            raise KeyError(f"포지션을 찾을 수 없습니다: {position_id}")
        return self._positions[position_id]

    def _accrue(self, position_id: int) -> Tuple[PositionRecord, PoolState]:
        position = self.position_info(position_id)
        pool_state = self.price_source.current_state(position.pool_id)
        lower = self.price_source.tick_boundary_growth(position.pool_id, position.tick_lower)
        upper = self.price_source.tick_boundary_growth(position.pool_id, position.tick_upper)
        inside0, inside1 = fee_growth_inside_pair(
            pool_state, lower, upper, position.tick_lower, position.tick_upper
        )
        fees0, fees1 = uncollected_fees(position, inside0, inside1)
        position = replace(
            position,
            fee_growth_inside_0_last_x128=inside0,
            fee_growth_inside_1_last_x128=inside1,
            tokens_owed_0=fees0,
            tokens_owed_1=fees1,
        )
        self._positions[position_id] = position
        return position, pool_state

    def settle_and_withdraw(
        self,
        position_id: int,
        liquidity: int,
        amount0_min: int,
        amount1_min: int,
        fee_cap0: int,
        fee_cap1: int
    ) -> Tuple[int, int]:
        position, pool_state = self._accrue(position_id)
        if liquidity > position.liquidity:
            raise ValueError(f"제거할 유동성이 포지션 유동성보다 큽니다: {liquidity} > {position.liquidity}")

        owed0, owed1 = position.tokens_owed_0, position.tokens_owed_1
        if liquidity > 0:
            sqrt_lower, sqrt_upper = get_sqrt_ratios_for_range(position.tick_lower, position.tick_upper)
            amount0, amount1 = get_amounts_for_liquidity(
                pool_state.sqrt_price_x96, sqrt_lower, sqrt_upper, liquidity
            )
            if amount0 < amount0_min or amount1 < amount1_min:
                raise ValueError("Price slippage check")
            owed0 += amount0
            owed1 += amount1

        collect0 = min(owed0, fee_cap0)
        collect1 = min(owed1, fee_cap1)
        self._positions[position_id] = replace(
            position,
            liquidity=position.liquidity - liquidity,
            tokens_owed_0=owed0 - collect0,
            tokens_owed_1=owed1 - collect1,
        )
        self.vault.deposit(position.token0, collect0)
        self.vault.deposit(position.token1, collect1)
        return collect0, collect1

    def add_liquidity(
        self,
        position_id: int,
        amount0: int,
        amount1: int,
        amount0_min: int,
        amount1_min: int
    ) -> Tuple[int, int, int]:
        position, pool_state = self._accrue(position_id)
        sqrt_price = pool_state.sqrt_price_x96
        sqrt_lower, sqrt_upper = get_sqrt_ratios_for_range(position.tick_lower, position.tick_upper)

        liquidity = get_liquidity_for_amounts(sqrt_price, sqrt_lower, sqrt_upper, amount0, amount1)

        # 민트 시 필요한 수량은 올림
        if sqrt_price <= sqrt_lower:
            used0 = get_amount0_delta(sqrt_lower, sqrt_upper, liquidity, True)
            used1 = 0
        elif sqrt_price < sqrt_upper:
            used0 = get_amount0_delta(sqrt_price, sqrt_upper, liquidity, True)
            used1 = get_amount1_delta(sqrt_lower, sqrt_price, liquidity, True)
        else:
            used0 = 0
            used1 = get_amount1_delta(sqrt_lower, sqrt_upper, liquidity, True)

        if used0 < amount0_min or used1 < amount1_min:
            raise ValueError("Price slippage check")

        self.vault.withdraw(position.token0, used0)
        self.vault.withdraw(position.token1, used1)
        self._positions[position_id] = replace(position, liquidity=position.liquidity + liquidity)
        return liquidity, used0, used1

    def snapshot(self):
        return dict(self._positions), dict(self._owners)

    def restore(self, state) -> None:
        self._positions, self._owners = dict(state[0]), dict(state[1])


class InMemorySwapExecutor:
    """pool 현재 가격으로 체결하는 스왑 실행기

    Args:
        price_source: 가격 소스
        vault: 엔진 금고
        pool_id: 체결 가격을 가져올 pool
        token0: pool의 token0
        token1: pool의 token1
        fee_ppm: 스왑 수수료 (백만분율)
        output_scale_x64: 출력 배율 (Q64, 불리한 체결 시뮬레이션)
        reported_received: 반환값만 조작하는 오작동 실행기 시뮬레이션
        on_swap: 체결 전에 호출되는 콜백 (재진입 시뮬레이션)
    """

    def __init__(
        self,
        price_source: InMemoryPriceSource,
        vault: InMemoryVault,
        pool_id: str,
        token0: str,
        token1: str,
        fee_ppm: int = 3000,
        output_scale_x64: int = Q64,
        reported_received: Optional[int] = None,
        on_swap: Optional[Callable[[], None]] = None
    ):
        self.price_source = price_source
        self.vault = vault
        self.pool_id = pool_id
        self.token0 = token0
        self.token1 = token1
        self.fee_ppm = fee_ppm
        self.output_scale_x64 = output_scale_x64
        self.reported_received = reported_received
        self.on_swap = on_swap
        self.swaps: List[Tuple[str, str, int, int]] = []

    def quote(self, token_in: str, amount_in: int) -> int:
        sqrt_price_x96 = self.price_source.current_state(self.pool_id).sqrt_price_x96
        if token_in == self.token0:
            amount_out = amount0_to_amount1(amount_in, sqrt_price_x96)
        elif token_in == self.token1:
            amount_out = amount1_to_amount0(amount_in, sqrt_price_x96)
        else:
            raise ValueError(f"지원하지 않는 토큰: {token_in}")
        amount_out = amount_out * (1_000_000 - self.fee_ppm) // 1_000_000
        return mul_div(amount_out, self.output_scale_x64, Q64)

    def swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        amount_out_min: int,
        route: bytes
    ) -> Tuple[int, int]:
        if self.on_swap is not None:
            self.on_swap()

        amount_out = self.quote(token_in, amount_in)
        self.vault.withdraw(token_in, amount_in)
        self.vault.deposit(token_out, amount_out)
        self.swaps.append((token_in, token_out, amount_in, amount_out))
        logger.debug("swap: %s %s -> %s %s", amount_in, token_in, amount_out, token_out)

        if self.reported_received is not None:
            return amount_in, self.reported_received
        return amount_in, amount_out


class InMemoryChain:
    """인메모리 실행 환경 (가격 소스 + 금고 + 보관자)

    사용법:
        chain = InMemoryChain()
        chain.price_source.add_pool("pool", state)
        with chain.transaction():
            ...  # 예외 발생 시 모든 상태 복원
    """

    def __init__(self, now: int = 0):
        self.price_source = InMemoryPriceSource(now)
        self.vault = InMemoryVault()
        self.custody = InMemoryCustody(self.price_source, self.vault)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryChain"]:
        snapshots = [
            (component, component.snapshot())
            for component in (self.price_source, self.vault, self.custody)
        ]
        try:
            yield self
        except BaseException:
            for component, state in snapshots:
                component.restore(state)
            raise
