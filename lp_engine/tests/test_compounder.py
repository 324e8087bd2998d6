"""
Position Engine 테스트

InMemoryChain 위에서 자동 복리 전체 흐름을 테스트합니다:
TWAP 검증, 수수료 정산, 비율 스왑, 재예치, 보상 분배, 원자성, 재진입 방지.
"""

import pytest

from ..engine.compounder import PositionEngine
from ..engine.ledger import reward_fee, split_reward
from ..config import EngineConfig
from ..constants import Q64, Q96, Q128
from ..data.memory import InMemoryChain, InMemorySwapExecutor
from ..data.types import CompoundResult, PoolState, PositionRecord, RewardConversion
from ..errors import (
    InsufficientBalance,
    InsufficientHistory,
    PriceDeviationExceeded,
    ReentrancyError,
    SlippageExceeded
)
from ..math.tick_math import get_sqrt_ratio_at_tick

POOL = "pool"
OWNER = "owner"
KEEPER = "keeper"
LIQUIDITY = 10**18
FEE_GROWTH = Q128 // 1000
EXPECTED_FEES = LIQUIDITY * FEE_GROWTH // Q128


def make_engine(
    fee_growth0=FEE_GROWTH, fee_growth1=FEE_GROWTH, elapsed=120, config=None,
    owner=OWNER, tick=0, tick_range=(-600, 600), **executor_kwargs
):
    """포지션 하나를 가진 엔진 (기본: 가격 1, 범위 [-600, 600])"""
    sqrt_price = get_sqrt_ratio_at_tick(tick)
    chain = InMemoryChain(now=1_000)
    chain.price_source.add_pool(POOL, PoolState(sqrt_price, tick, 0, 0))
    chain.custody.register(1, owner, PositionRecord(
        pool_id=POOL, token0="T0", token1="T1", fee=3000,
        tick_lower=tick_range[0], tick_upper=tick_range[1], liquidity=LIQUIDITY
    ))
    chain.price_source.advance(elapsed)
    chain.price_source.set_state(POOL, PoolState(sqrt_price, tick, fee_growth0, fee_growth1))

    executor = InMemorySwapExecutor(chain.price_source, chain.vault, POOL, "T0", "T1", **executor_kwargs)
    engine = PositionEngine(
        chain.price_source, chain.custody, executor, chain.vault,
        config=config or EngineConfig(), unit_of_work=chain.transaction
    )
    return engine, chain, executor


def ledger_total(engine, token):
    return sum(balance for (_, t), balance in engine.ledger.balances().items() if t == token)


def chain_state(chain):
    return (
        chain.vault.snapshot(),
        chain.custody.snapshot(),
        chain.price_source.snapshot(),
    )


class TestReadOnlyOperations:
    """uncollected_fees, value_position, plan_rebalance_swap"""

    def test_uncollected_fees(self):
        engine, _, _ = make_engine()
        assert engine.uncollected_fees(1) == (EXPECTED_FEES, EXPECTED_FEES)

    def test_value_position(self):
        engine, _, _ = make_engine()
        breakdown = engine.value_position(1, Q96, Q96)
        assert breakdown.amount0 > 0 and breakdown.amount1 > 0
        assert breakdown.fees0 == EXPECTED_FEES
        assert breakdown.price_deviation_x64 == 0

    def test_plan_rebalance_swap_owner(self):
        engine, _, _ = make_engine()
        plan = engine.plan_rebalance_swap(1, 1000, 0, RewardConversion.TOKEN_0, caller=OWNER)
        assert plan.sell_token0
        assert plan.reward_amount_0 == 0

    def test_plan_rebalance_swap_keeper(self):
        engine, _, _ = make_engine()
        plan = engine.plan_rebalance_swap(1, 1000, 0, RewardConversion.TOKEN_0, caller=KEEPER)
        assert plan.reward_amount_0 > 0

    def test_plan_requires_twap(self):
        engine, _, _ = make_engine(elapsed=0)
        with pytest.raises(InsufficientHistory):
            engine.plan_rebalance_swap(1, 1000, 0)


class TestOwnerCompound:
    """소유자 본인 실행"""

    def test_compound_all(self):
        engine, chain, _ = make_engine()
        result = engine.validated_auto_compound(1, caller=OWNER)

        assert result.reward0 == 0 and result.reward1 == 0
        assert result.added0 > 0 and result.added1 > 0
        assert chain.custody.position_info(1).liquidity > LIQUIDITY
        assert engine.ledger.balance_of(KEEPER, "T0") == 0
        assert engine.ledger.balance_of(engine.config.protocol_account, "T0") == 0

    def test_leftover_is_kept_for_owner(self):
        """재예치하고 남은 토큰은 소유자 원장 잔액이며 금고에 보관"""
        engine, chain, _ = make_engine()
        result = engine.validated_auto_compound(1, caller=OWNER)

        for token, added in (("T0", result.added0), ("T1", result.added1)):
            leftover = engine.ledger.balance_of(OWNER, token)
            assert leftover == chain.vault.balance_of(token) == ledger_total(engine, token)
            assert added + leftover <= EXPECTED_FEES

    def test_swap_to_range_ratio(self):
        """token0 수수료만 있으면 절반가량 token1로 바꿔서 재예치"""
        engine, chain, executor = make_engine(fee_growth1=0)
        result = engine.validated_auto_compound(1, caller=OWNER)

        assert len(executor.swaps) == 1
        token_in, token_out, amount_in, _ = executor.swaps[0]
        assert (token_in, token_out) == ("T0", "T1")
        assert EXPECTED_FEES * 45 // 100 < amount_in < EXPECTED_FEES * 55 // 100
        assert result.added1 > 0
        assert chain.vault.balance_of("T0") == ledger_total(engine, "T0")
        assert chain.vault.balance_of("T1") == ledger_total(engine, "T1")

    def test_without_swap(self):
        """스왑 없이 한쪽 토큰만 있으면 재예치할 수 없고 전액 원장에 남음"""
        engine, chain, executor = make_engine(fee_growth1=0)
        result = engine.validated_auto_compound(1, caller=OWNER, do_swap=False)

        assert executor.swaps == []
        assert result == CompoundResult(0, 0, 0, 0)
        assert engine.ledger.balance_of(OWNER, "T0") == EXPECTED_FEES
        assert chain.custody.position_info(1).liquidity == LIQUIDITY

    def test_leftover_is_used_next_time(self):
        engine, chain, _ = make_engine(fee_growth1=0)
        engine.validated_auto_compound(1, caller=OWNER, do_swap=False)

        result = engine.validated_auto_compound(1, caller=OWNER)
        assert result.added0 > 0 and result.added1 > 0
        assert engine.ledger.balance_of(OWNER, "T0") < EXPECTED_FEES

    def test_nothing_to_compound(self):
        engine, chain, executor = make_engine(fee_growth0=0, fee_growth1=0)
        assert engine.validated_auto_compound(1, caller=OWNER) == CompoundResult(0, 0, 0, 0)
        assert executor.swaps == []
        assert engine.ledger.events == []


class TestKeeperCompound:
    """대리 실행자 보상"""

    def test_rewards(self):
        engine, chain, _ = make_engine()
        config = engine.config
        result = engine.validated_auto_compound(1, caller=KEEPER)

        expected0 = split_reward(
            reward_fee(result.added0, config.total_reward_x64),
            config.total_reward_x64, config.compounder_reward_x64
        )
        assert result.reward0 == expected0[0] > 0
        assert engine.ledger.balance_of(KEEPER, "T0") == result.reward0
        assert engine.ledger.balance_of(config.protocol_account, "T0") == expected0[1]
        assert result.reward1 > 0

        for token in ("T0", "T1"):
            assert chain.vault.balance_of(token) == ledger_total(engine, token)

    def test_reward_in_token0(self):
        engine, chain, _ = make_engine()
        result = engine.validated_auto_compound(1, caller=KEEPER, reward_conversion=RewardConversion.TOKEN_0)

        assert result.reward0 > 0
        assert result.reward1 == 0
        assert engine.ledger.balance_of(engine.config.protocol_account, "T1") == 0
        for token in ("T0", "T1"):
            assert chain.vault.balance_of(token) == ledger_total(engine, token)

    def test_protocol_owned_position(self):
        """소유자가 프로토콜 계정이어도 남은 잔액과 프로토콜 몫이 모두 원장에 남음"""
        protocol = EngineConfig().protocol_account
        engine, chain, _ = make_engine(owner=protocol)
        result = engine.validated_auto_compound(1, caller=KEEPER)

        assert result.reward0 > 0 and result.reward1 > 0
        for token, added, reward in (("T0", result.added0, result.reward0), ("T1", result.added1, result.reward1)):
            fee = reward_fee(added, engine.config.total_reward_x64)
            _, protocol_share = split_reward(
                fee, engine.config.total_reward_x64, engine.config.compounder_reward_x64
            )
            assert protocol_share > 0
            assert engine.ledger.balance_of(KEEPER, token) == reward
            assert engine.ledger.balance_of(protocol, token) == chain.vault.balance_of(token) - reward
            assert chain.vault.balance_of(token) == ledger_total(engine, token)

    def test_zero_reward_config(self):
        config = EngineConfig(total_reward_x64=0, compounder_reward_x64=0)
        engine, _, _ = make_engine(config=config)
        result = engine.validated_auto_compound(1, caller=KEEPER)

        assert (result.reward0, result.reward1) == (0, 0)
        assert engine.ledger.balance_of(config.protocol_account, "T0") == 0

    def test_withdraw_reward(self):
        engine, chain, _ = make_engine()
        result = engine.validated_auto_compound(1, caller=KEEPER)

        assert engine.withdraw_balance(KEEPER, "T0", "keeper-wallet") == result.reward0
        assert engine.ledger.balance_of(KEEPER, "T0") == 0
        assert chain.vault.payouts[("keeper-wallet", "T0")] == result.reward0

    def test_withdraw_too_much(self):
        engine, chain, _ = make_engine()
        result = engine.validated_auto_compound(1, caller=KEEPER)
        vault_before = chain.vault.snapshot()

        with pytest.raises(InsufficientBalance):
            engine.withdraw_balance(KEEPER, "T0", "keeper-wallet", result.reward0 + 1)
        assert engine.ledger.balance_of(KEEPER, "T0") == result.reward0
        assert chain.vault.snapshot() == vault_before


class TestValidation:
    """검증 실패 시 아무것도 바뀌지 않음"""

    def test_insufficient_history(self):
        engine, chain, _ = make_engine(elapsed=0)
        before = chain_state(chain)

        with pytest.raises(InsufficientHistory):
            engine.validated_auto_compound(1, caller=OWNER)
        assert chain_state(chain) == before
        assert engine.ledger.events == []

    def test_price_deviation(self):
        """방금 조작된 가격은 TWAP에 반영되지 않아 거부됨"""
        engine, chain, _ = make_engine()
        chain.price_source.set_state(POOL, PoolState(get_sqrt_ratio_at_tick(500), 500, FEE_GROWTH, FEE_GROWTH))
        before = chain_state(chain)

        with pytest.raises(PriceDeviationExceeded):
            engine.validated_auto_compound(1, caller=KEEPER)
        assert chain_state(chain) == before

    def test_explicit_tolerance(self):
        engine, chain, _ = make_engine()
        chain.price_source.set_state(POOL, PoolState(get_sqrt_ratio_at_tick(150), 150, FEE_GROWTH, FEE_GROWTH))
        with pytest.raises(PriceDeviationExceeded):
            engine.validated_auto_compound(1, caller=OWNER, max_deviation_ticks=100)

        result = engine.validated_auto_compound(1, caller=OWNER, max_deviation_ticks=200)
        assert result.added0 > 0 or result.added1 > 0

    def test_invalid_oracle_params(self):
        engine, _, _ = make_engine()
        with pytest.raises(ValueError):
            engine.validated_auto_compound(1, caller=OWNER, window_seconds=30)
        with pytest.raises(ValueError):
            engine.validated_auto_compound(1, caller=OWNER, max_deviation_ticks=201)

    def test_slippage_rolls_back_everything(self):
        """불리한 체결은 거부되고 정산/원장/금고 변경이 모두 복원됨"""
        engine, chain, _ = make_engine(fee_growth1=0, output_scale_x64=Q64 * 9 // 10)
        before = chain_state(chain)

        with pytest.raises(SlippageExceeded):
            engine.validated_auto_compound(1, caller=KEEPER)

        assert chain_state(chain) == before
        assert chain.custody.position_info(1).tokens_owed_0 == 0
        assert engine.ledger.events == []
        assert engine.uncollected_fees(1) == (EXPECTED_FEES, 0)

    def test_misreported_swap_uses_balance_changes(self):
        """실행기 반환값이 아니라 금고 잔액 변화로 결과 판단"""
        engine, chain, _ = make_engine(fee_growth1=0, reported_received=0)
        result = engine.validated_auto_compound(1, caller=OWNER)

        assert result.added1 > 0
        for token in ("T0", "T1"):
            assert chain.vault.balance_of(token) == ledger_total(engine, token)

    def test_misreported_swap_cannot_hide_slippage(self):
        engine, _, _ = make_engine(fee_growth1=0, output_scale_x64=Q64 // 2, reported_received=10**30)
        with pytest.raises(SlippageExceeded):
            engine.validated_auto_compound(1, caller=OWNER)


class TestLowPrice:
    """priceX96가 0으로 내림되는 낮은 가격대"""

    def test_compound_far_below_price_one(self):
        engine, chain, executor = make_engine(tick=-700000, tick_range=(-700200, -699600))
        assert chain.price_source.current_state(POOL).sqrt_price_x96 ** 2 < Q96

        engine.validated_auto_compound(1, caller=KEEPER)

        assert len(executor.swaps) == 1
        token_in, token_out, amount_in, amount_out = executor.swaps[0]
        assert (token_in, token_out) == ("T1", "T0")
        assert 0 < amount_in <= EXPECTED_FEES
        assert amount_out > amount_in
        for token in ("T0", "T1"):
            assert chain.vault.balance_of(token) == ledger_total(engine, token)


class TestReentrancy:
    """작업 중 재진입 방지"""

    def test_reentrant_call_is_rejected(self):
        engine, chain, executor = make_engine(fee_growth1=0)
        executor.on_swap = lambda: engine.withdraw_balance(OWNER, "T0", OWNER, 0)
        before = chain_state(chain)

        with pytest.raises(ReentrancyError):
            engine.validated_auto_compound(1, caller=OWNER)
        assert chain_state(chain) == before

        # 플래그는 해제됨
        executor.on_swap = None
        result = engine.validated_auto_compound(1, caller=OWNER)
        assert result.added0 > 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
