"""
Reward Ledger - 계정별 토큰 잔액 원장

(account, token) → 잔액. 모든 변동은 부호 있는 LedgerEvent로 기록되며
각 키에 대해 "이벤트 delta 합 == 현재 잔액"이 항상 성립합니다.

transaction() 블록 안의 변경은 예외가 발생하면 모두 롤백됩니다.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

from ..constants import Q64
from ..data.types import LedgerEvent
from ..errors import InsufficientBalance

logger = logging.getLogger(__name__)


def split_reward(
    fee_amount: int,
    total_reward_x64: int,
    compounder_reward_x64: int
) -> Tuple[int, int]:
    """보상을 호출자 몫과 프로토콜 몫으로 분할

    caller = fee × C / T (내림), protocol = fee - caller

    Returns:
        (caller_share, protocol_share)
    """
    if fee_amount < 0:
        raise ValueError(f"fee_amount는 음수일 수 없습니다: {fee_amount}")
    if compounder_reward_x64 > total_reward_x64:
        raise ValueError("compounder_reward_x64는 total_reward_x64보다 클 수 없습니다")
    if total_reward_x64 == 0:
        return 0, fee_amount
    caller_share = fee_amount * compounder_reward_x64 // total_reward_x64
    return caller_share, fee_amount - caller_share


def reward_fee(compounded_amount: int, total_reward_x64: int) -> int:
    """복리로 추가된 수량에 대한 보상 (compounded × T / Q64)"""
    return compounded_amount * total_reward_x64 // Q64


def max_compound_amount(available: int, total_reward_x64: int) -> int:
    """보상을 떼고도 남도록 추가 가능한 최대 수량 (available × Q64 / (Q64 + T))"""
    return available * Q64 // (Q64 + total_reward_x64)


class RewardLedger:
    """계정별 토큰 잔액 원장

    잔액 변동 이벤트는 drain_events()로 가져갈 때까지 누적됩니다.

    사용법:
        ledger = RewardLedger()
        with ledger.transaction():
            ledger.credit("alice", "WETH", 100)
            ledger.debit("alice", "WETH", 40)
    """

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = {}
        self._events: List[LedgerEvent] = []

    def balance_of(self, account: str, token: str) -> int:
        return self._balances.get((account, token), 0)

    @property
    def events(self) -> List[LedgerEvent]:
        return list(self._events)

    def balances(self) -> Dict[Tuple[str, str], int]:
        return dict(self._balances)

    def drain_events(self) -> List[LedgerEvent]:
        """누적된 이벤트를 반환하고 비움 (잔액은 그대로)"""
        events, self._events = self._events, []
        return events

    def credit(self, account: str, token: str, amount: int) -> None:
        """잔액 증가 (처음 입금 시 항목 생성)"""
        if amount < 0:
            raise ValueError(f"입금액은 음수일 수 없습니다: {amount}")
        if amount == 0:
            return
        self._apply(account, token, amount)

    def debit(self, account: str, token: str, amount: int) -> None:
        """잔액 감소

        Raises:
            InsufficientBalance: amount > 잔액
        """
        if amount < 0:
            raise ValueError(f"출금액은 음수일 수 없습니다: {amount}")
        balance = self.balance_of(account, token)
        if amount > balance:
            raise InsufficientBalance(account, token, balance, amount)
        if amount == 0:
            return
        self._apply(account, token, -amount)

    def set_balance(self, account: str, token: str, new_amount: int) -> int:
        """잔액을 절대값으로 설정하고 부호 있는 delta를 반환"""
        if new_amount < 0:
            raise ValueError(f"잔액은 음수일 수 없습니다: {new_amount}")
        delta = new_amount - self.balance_of(account, token)
        if delta != 0:
            self._apply(account, token, delta)
        return delta

    def _apply(self, account: str, token: str, delta: int) -> None:
        key = (account, token)
        balance = self._balances.get(key, 0) + delta
        self._balances[key] = balance
        self._events.append(LedgerEvent(account, token, delta))
        logger.debug("원장 변동: account=%s token=%s delta=%s balance=%s", account, token, delta, balance)

    @contextmanager
    def transaction(self) -> Iterator["RewardLedger"]:
        """원자적 작업 단위. 예외 발생 시 블록 안의 모든 변경을 되돌림"""
        balances = dict(self._balances)
        events = list(self._events)
        try:
            yield self
        except BaseException:
            self._balances = balances
            self._events = events
            raise
