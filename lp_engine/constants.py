"""
LP Engine 상수 정의

온체인 수준 정밀도를 위한 고정소수점 상수들:
- Q64: 보상 비율 인코딩에 사용 (2^64 = 100%)
- Q96: sqrt price 인코딩에 사용 (2^96)
- Q128: fee growth 인코딩에 사용 (2^128)
- 설정값 허용 범위 (TWAP 윈도우, 틱 편차, 보상 비율)
"""

# Fixed-point 인코딩 상수
Q64: int = 2 ** 64
Q96: int = 2 ** 96
Q128: int = 2 ** 128

# 틱 범위 상수
MIN_TICK: int = -887272
MAX_TICK: int = 887272

# uint 최대값
UINT256_MAX: int = 2 ** 256 - 1
UINT128_MAX: int = 2 ** 128 - 1

# 설정 허용 범위
MIN_TWAP_SECONDS: int = 60
# 1틱 = 약 0.01% 가격 변화, 200틱 = 약 2%
MAX_TWAP_TICK_DIFFERENCE: int = 200
MAX_PRICE_DIFFERENCE_X64: int = Q64 // 50  # 2%
MAX_REWARD_X64: int = Q64 // 50  # 2%
