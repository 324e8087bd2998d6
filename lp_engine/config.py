"""
Configuration settings for the LP engine

Loads environment variables and provides validated engine configuration.
"""
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from .constants import (
    Q64,
    MIN_TWAP_SECONDS,
    MAX_TWAP_TICK_DIFFERENCE,
    MAX_PRICE_DIFFERENCE_X64,
    MAX_REWARD_X64,
)

# Load environment variables from .env file
load_dotenv()


class EngineConfig(BaseModel):
    """엔진 파라미터 (유효 범위 검증 포함)"""
    twap_seconds: int = Field(default=60, description="TWAP 윈도우 (초)", ge=MIN_TWAP_SECONDS)
    max_twap_tick_difference: int = Field(
        default=100, description="현재 틱과 TWAP 틱의 최대 차이", ge=0, le=MAX_TWAP_TICK_DIFFERENCE
    )
    max_price_difference_x64: int = Field(
        default=Q64 // 100, description="스왑 최소 출력 허용 가격 차이 (Q64)",
        ge=0, le=MAX_PRICE_DIFFERENCE_X64
    )
    total_reward_x64: int = Field(
        default=Q64 // 50, description="대리 실행 시 전체 보상 비율 (Q64)", ge=0, le=MAX_REWARD_X64
    )
    compounder_reward_x64: int = Field(
        default=Q64 // 100, description="전체 보상 중 호출자 몫 (Q64)", ge=0, le=MAX_REWARD_X64
    )
    default_max_pool_price_difference_x64: int = Field(
        default=Q64 // 50, description="pool 가격과 기준 가격의 기본 허용 차이 (Q64)", ge=0, le=Q64
    )
    max_pool_price_difference_x64: Dict[str, int] = Field(
        default_factory=dict, description="pool별 허용 차이 (Q64)"
    )
    protocol_account: str = Field(default="protocol", description="프로토콜 보상 수령 계정")

    @model_validator(mode="after")
    def check_reward_split(self) -> "EngineConfig":
        if self.compounder_reward_x64 > self.total_reward_x64:
            raise ValueError(
                f"compounder_reward_x64({self.compounder_reward_x64})는 "
                f"total_reward_x64({self.total_reward_x64})보다 클 수 없습니다"
            )
        for pool_id, tolerance in self.max_pool_price_difference_x64.items():
            if not 0 <= tolerance <= Q64:
                raise ValueError(f"pool {pool_id}의 허용 차이 범위 오류: {tolerance}")
        self.max_pool_price_difference_x64 = {
            pool_id.lower(): tolerance
            for pool_id, tolerance in self.max_pool_price_difference_x64.items()
        }
        return self

    def pool_price_tolerance_x64(self, pool_id: str) -> int:
        """pool별 허용 차이 (없으면 기본값)"""
        return self.max_pool_price_difference_x64.get(
            pool_id.lower(), self.default_max_pool_price_difference_x64
        )


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value, 0) if value else default


class Settings:
    """Application settings"""

    # Engine parameters (LP_ENGINE_RPC_URL은 RpcClient가 직접 읽음)
    TWAP_SECONDS: int = _int_env("LP_ENGINE_TWAP_SECONDS", 60)
    MAX_TWAP_TICK_DIFFERENCE: int = _int_env("LP_ENGINE_MAX_TWAP_TICK_DIFFERENCE", 100)
    MAX_PRICE_DIFFERENCE_X64: int = _int_env("LP_ENGINE_MAX_PRICE_DIFFERENCE_X64", Q64 // 100)
    TOTAL_REWARD_X64: int = _int_env("LP_ENGINE_TOTAL_REWARD_X64", Q64 // 50)
    COMPOUNDER_REWARD_X64: int = _int_env("LP_ENGINE_COMPOUNDER_REWARD_X64", Q64 // 100)
    MAX_POOL_PRICE_DIFFERENCE_X64: int = _int_env("LP_ENGINE_MAX_POOL_PRICE_DIFFERENCE_X64", Q64 // 50)
    PROTOCOL_ACCOUNT: str = os.getenv("LP_ENGINE_PROTOCOL_ACCOUNT", "protocol")

    def engine_config(self, overrides: Optional[Dict[str, object]] = None) -> EngineConfig:
        """환경 변수 값으로 EngineConfig 생성 (pydantic 검증)"""
        values: Dict[str, object] = {
            "twap_seconds": self.TWAP_SECONDS,
            "max_twap_tick_difference": self.MAX_TWAP_TICK_DIFFERENCE,
            "max_price_difference_x64": self.MAX_PRICE_DIFFERENCE_X64,
            "total_reward_x64": self.TOTAL_REWARD_X64,
            "compounder_reward_x64": self.COMPOUNDER_REWARD_X64,
            "default_max_pool_price_difference_x64": self.MAX_POOL_PRICE_DIFFERENCE_X64,
            "protocol_account": self.PROTOCOL_ACCOUNT,
        }
        if overrides:
            values.update(overrides)
        return EngineConfig(**values)


# Create global settings instance
settings = Settings()
