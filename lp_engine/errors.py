"""
Engine 오류 정의

두 가지 계열로 나뉩니다:
- ValidationFailure: 예상 가능한 검증 실패 (오라클 없음, 가격 편차, 슬리피지, 잔액 부족).
  호출자가 나중에 재시도할 수 있습니다.
- InvariantViolation: 내부 불변식 위반 (fee 스냅샷 역행, 산술 오버플로우).
  프로그래밍 오류나 데이터 손상을 의미하므로 복구하지 않습니다.

어느 쪽이든 현재 작업 전체를 중단하며, 원장 변경은 롤백됩니다.
"""


class EngineError(Exception):
    """LP Engine 오류의 기본 클래스"""
    pass


class ValidationFailure(EngineError):
    """예상 가능한 검증 실패"""
    pass


class InvariantViolation(EngineError):
    """내부 불변식 위반 (치명적)"""
    pass


class InsufficientHistory(ValidationFailure):
    """가격 소스가 TWAP 윈도우만큼의 과거 관측값을 보유하지 않음"""

    def __init__(self, pool_id: str, seconds_ago: int):
        self.pool_id = pool_id
        self.seconds_ago = seconds_ago
        super().__init__(
            f"관측 기록 부족: pool={pool_id}, secondsAgo={seconds_ago}"
        )


class PriceDeviationExceeded(ValidationFailure):
    """현재 가격이 TWAP 또는 기준 가격에서 허용 범위 이상 벗어남"""
    pass


class OracleDeviation(PriceDeviationExceeded):
    """Pool 가격과 외부 기준 가격의 차이가 풀별 허용치를 초과"""
    pass


class SlippageExceeded(ValidationFailure):
    """스왑 결과가 최소 출력 하한보다 작음"""

    def __init__(self, received: int, amount_out_min: int):
        self.received = received
        self.amount_out_min = amount_out_min
        super().__init__(
            f"슬리피지 초과: 수령 {received} < 최소 {amount_out_min}"
        )


class InsufficientBalance(ValidationFailure):
    """원장 잔액보다 큰 출금 요청"""

    def __init__(self, account: str, token: str, balance: int, amount: int):
        self.account = account
        self.token = token
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"잔액 부족: account={account}, token={token}, "
            f"balance={balance}, requested={amount}"
        )


class ReentrancyError(ValidationFailure):
    """작업 진행 중 엔진 진입점이 다시 호출됨"""
    pass


class InconsistentFeeState(InvariantViolation):
    """fee growth 스냅샷이 역행함"""
    pass


class Overflow(InvariantViolation, OverflowError):
    """결과가 uint256 범위를 초과"""
    pass


class DivisionByZero(InvariantViolation, ZeroDivisionError):
    """분모가 0"""
    pass
