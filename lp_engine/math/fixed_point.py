"""
Fixed Point Math - 전체 정밀도 곱셈/나눗셈

Q64/Q96/Q128 고정소수점 연산의 기반이 되는 함수들.
온체인 FullMath와 동일한 결과를 내도록 uint256 범위를 검사합니다.

References:
- Uniswap V3 Core: contracts/libraries/FullMath.sol
- Uniswap V3 Core: contracts/libraries/UnsafeMath.sol

핵심 공식:
    mul_div(a, b, d) = floor(a × b / d)    # 중간값 512비트, 결과 256비트
    integer_sqrt(x) = max{y : y² <= x}
"""

from ..constants import Q96, UINT256_MAX
from ..errors import Overflow, DivisionByZero


def _require_uint256(value: int, name: str) -> None:
    if value < 0 or value > UINT256_MAX:
        raise Overflow(f"{name}이(가) uint256 범위를 벗어났습니다: {value}")


def mul_div(a: int, b: int, denominator: int) -> int:
    """(a × b) / denominator 내림

    곱셈 중간값은 512비트까지 허용하고, 최종 결과만 uint256 범위로 제한합니다.
    마지막 floor 나눗셈 외에는 반올림이 없습니다.

    Args:
        a: 피승수 (uint256)
        b: 승수 (uint256)
        denominator: 제수 (uint256)

    Returns:
        floor(a × b / denominator)

    Raises:
        DivisionByZero: denominator가 0인 경우
        Overflow: 피연산자나 결과가 uint256 범위를 벗어난 경우
    """
    _require_uint256(a, "a")
    _require_uint256(b, "b")
    _require_uint256(denominator, "denominator")
    if denominator == 0:
        raise DivisionByZero("mul_div: denominator가 0입니다")

    result = (a * b) // denominator
    if result > UINT256_MAX:
        raise Overflow(f"mul_div 결과가 uint256 범위를 초과합니다: {a} * {b} / {denominator}")
    return result


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    """(a × b) / denominator 올림"""
    result = mul_div(a, b, denominator)
    if (a * b) % denominator > 0:
        if result == UINT256_MAX:
            raise Overflow("mul_div_rounding_up 결과가 uint256 범위를 초과합니다")
        result += 1
    return result


def div_rounding_up(numerator: int, denominator: int) -> int:
    """numerator / denominator 올림"""
    if denominator == 0:
        raise DivisionByZero("div_rounding_up: denominator가 0입니다")
    result = numerator // denominator
    if numerator % denominator > 0:
        result += 1
    return result


def integer_sqrt(x: int) -> int:
    """정수 제곱근 (내림)

    비트 길이로 sqrt(x) 이상의 초기값을 잡은 뒤 Newton(바빌로니아) 반복으로
    단조 감소시킵니다. 반복이 더 이상 줄지 않는 지점이 floor(sqrt(x))입니다.

    Args:
        x: 음이 아닌 정수

    Returns:
        y * y <= x 를 만족하는 가장 큰 y
    """
    if x < 0:
        raise ValueError(f"음수의 제곱근은 계산할 수 없습니다: {x}")
    if x < 2:
        return x

    # 2^ceil(bits/2) >= sqrt(x)
    y = 1 << ((x.bit_length() + 1) // 2)
    while True:
        z = (y + x // y) >> 1
        if z >= y:
            return y
        y = z


def price_x96_from_sqrt(sqrt_price_x96: int) -> int:
    """sqrtPriceX96 → priceX96 (token1/token0, Q96)

    priceX96 = sqrtPriceX96² / 2^96
    """
    return mul_div(sqrt_price_x96, sqrt_price_x96, Q96)


def amount0_to_amount1(amount0: int, sqrt_price_x96: int) -> int:
    """token0 수량을 현재 가격의 token1 수량으로 환산 (내림)

    amount0 × sqrtP / 2^96 × sqrtP / 2^96
    priceX96가 0으로 내려가는 낮은 가격에서도 정밀도를 유지합니다.
    """
    return mul_div(mul_div(amount0, sqrt_price_x96, Q96), sqrt_price_x96, Q96)


def amount1_to_amount0(amount1: int, sqrt_price_x96: int) -> int:
    """token1 수량을 현재 가격의 token0 수량으로 환산 (내림)

    amount1 × 2^96 / sqrtP × 2^96 / sqrtP
    """
    return mul_div(mul_div(amount1, Q96, sqrt_price_x96), Q96, sqrt_price_x96)
