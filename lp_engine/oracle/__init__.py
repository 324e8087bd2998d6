"""
Oracle layer for LP Engine

- tick_oracle: 누적 틱 기반 TWAP
- price_guard: TWAP 편차 검증, 스왑 최소 출력량
"""

from .tick_oracle import TickOracle, average_tick
from .price_guard import (
    PriceGuard,
    check_deviation,
    min_acceptable_output,
    require_min_output,
)
