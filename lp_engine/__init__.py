"""
LP Engine - 집중 유동성 포지션 평가, 오라클 가드, 보상 분배 엔진

온체인 수준 정밀도로 포지션의 실제 토큰 수량과 미수령 수수료를 계산하고,
TWAP으로 가격 조작을 검증하며, 자동 복리 보상을 분배하는 라이브러리.
"""

__version__ = "0.1.0"
__author__ = "Zekiya"

from .constants import Q64, Q96, Q128, MIN_TICK, MAX_TICK
