"""
JSON-RPC 클라이언트

eth_call로 Uniswap V3 pool과 NonfungiblePositionManager의 상태를 읽는 읽기 전용 어댑터.
PriceSource와 PositionReader 인터페이스를 구현합니다.

observe()가 "OLD"로 revert하면 (pool이 요청한 시점의 관측 기록을 보유하지 않음)
값을 추정하지 않고 InsufficientHistory를 발생시킵니다.
"""

import logging
import os
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..errors import InsufficientHistory
from .types import PoolState, PositionRecord, TickBoundary

logger = logging.getLogger(__name__)

# 함수 셀렉터 (keccak256(signature)[:4])
SLOT0_SELECTOR = "3850c7bd"  # slot0()
FEE_GROWTH_GLOBAL0_SELECTOR = "f3058399"  # feeGrowthGlobal0X128()
FEE_GROWTH_GLOBAL1_SELECTOR = "46141319"  # feeGrowthGlobal1X128()
TICKS_SELECTOR = "f30dba93"  # ticks(int24)
OBSERVE_SELECTOR = "883bdbfd"  # observe(uint32[])
POSITIONS_SELECTOR = "99fbab88"  # positions(uint256)
OWNER_OF_SELECTOR = "6352211e"  # ownerOf(uint256)
GET_POOL_SELECTOR = "1698ee82"  # getPool(address,address,uint24)
ERROR_STRING_SELECTOR = "08c379a0"  # Error(string)

_WORD = 2 ** 256


class RpcClientError(Exception):
    """JSON-RPC 오류"""
    pass


class RpcRevert(RpcClientError):
    """eth_call이 revert됨"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"execution reverted: {reason}")


def encode_word(value: int) -> str:
    """정수를 ABI 32바이트 워드로 인코딩 (음수는 2의 보수)"""
    return format(value % _WORD, "064x")


def encode_address(address: str) -> str:
    return address.lower().replace("0x", "").rjust(64, "0")


def decode_words(data: str) -> List[int]:
    """ABI 반환값을 32바이트 워드 목록으로 분해"""
    data = data[2:] if data.startswith("0x") else data
    if len(data) % 64 != 0:
        raise RpcClientError(f"ABI 데이터 길이가 32바이트 배수가 아닙니다: {len(data)}")
    return [int(data[i:i + 64], 16) for i in range(0, len(data), 64)]


def to_signed(word: int) -> int:
    return word - _WORD if word >= 2 ** 255 else word


def to_address(word: int) -> str:
    return "0x" + format(word, "064x")[-40:]


def decode_revert_reason(data: Optional[str]) -> str:
    """Error(string) revert 데이터에서 사유 문자열 추출"""
    if not data:
        return ""
    data = data[2:] if data.startswith("0x") else data
    if not data.startswith(ERROR_STRING_SELECTOR):
        return data
    words = decode_words(data[8:])
    if len(words) < 2:
        return ""
    length = words[1]
    payload = data[8 + 128:8 + 128 + length * 2]
    return bytes.fromhex(payload).decode("utf-8", errors="replace")


class RpcClient:
    """이더리움 JSON-RPC 클라이언트

    사용법:
        client = RpcClient("https://mainnet.example/rpc")
        data = client.eth_call("0xpool...", "0x3850c7bd")
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3
    ):
        """
        Args:
            rpc_url: JSON-RPC 엔드포인트. None이면 환경변수에서 로드
            timeout: 요청 타임아웃 (초)
            max_retries: 네트워크 오류 시 최대 재시도 횟수
        """
        self.rpc_url = rpc_url or os.getenv("LP_ENGINE_RPC_URL")
        if not self.rpc_url:
            raise RpcClientError(
                "RPC URL이 필요합니다. LP_ENGINE_RPC_URL 환경변수를 설정하거나 "
                "rpc_url 파라미터로 전달하세요."
            )
        self.timeout = timeout
        self.max_retries = max_retries
        self._session = requests.Session()
        self._request_id = 0

    def _request(self, method: str, params: List[Any]) -> Any:
        """JSON-RPC 요청 실행

        네트워크 오류만 재시도합니다. revert는 결정적이므로 즉시 RpcRevert를 발생시킵니다.
        """
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        last_error = None
        for attempt in range(self.max_retries):
            try:
                response = self._session.post(
                    self.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
            except requests.exceptions.Timeout:
                last_error = RpcClientError(f"요청 타임아웃 ({self.timeout}초)")
            except requests.exceptions.RequestException as e:
                last_error = RpcClientError(f"네트워크 오류: {e}")
            except ValueError as e:
                last_error = RpcClientError(f"JSON 디코딩 오류: {e}")
            else:
                if "error" in data:
                    error = data["error"]
                    message = error.get("message", str(error))
                    if "revert" in message.lower():
                        reason = decode_revert_reason(error.get("data")) or message
                        raise RpcRevert(reason)
                    raise RpcClientError(f"RPC 오류: {message}")
                if "result" not in data:
                    raise RpcClientError("응답에 'result' 필드가 없습니다")
                return data["result"]

            logger.warning("RPC 요청 실패 (%s/%s): %s", attempt + 1, self.max_retries, last_error)
            if attempt < self.max_retries - 1:
                time.sleep(1.0 * (attempt + 1))

        raise last_error

    def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        return self._request("eth_call", [{"to": to, "data": data}, block])

    def call_words(self, to: str, selector: str, *args: str) -> List[int]:
        return decode_words(self.eth_call(to, "0x" + selector + "".join(args)))


class RpcPriceSource:
    """Uniswap V3 pool 컨트랙트를 직접 읽는 PriceSource

    호출할 때마다 새로 조회하며 캐시하지 않습니다.
    """

    def __init__(self, client: RpcClient):
        self.client = client

    def current_state(self, pool_id: str) -> PoolState:
        slot0 = self.client.call_words(pool_id, SLOT0_SELECTOR)
        fee_growth0 = self.client.call_words(pool_id, FEE_GROWTH_GLOBAL0_SELECTOR)
        fee_growth1 = self.client.call_words(pool_id, FEE_GROWTH_GLOBAL1_SELECTOR)
        return PoolState(
            sqrt_price_x96=slot0[0],
            tick=to_signed(slot0[1]),
            fee_growth_global_0_x128=fee_growth0[0],
            fee_growth_global_1_x128=fee_growth1[0],
        )

    def tick_boundary_growth(self, pool_id: str, tick: int) -> TickBoundary:
        # ticks(int24): liquidityGross, liquidityNet, feeGrowthOutside0X128, feeGrowthOutside1X128, ...
        words = self.client.call_words(pool_id, TICKS_SELECTOR, encode_word(tick))
        return TickBoundary(
            fee_growth_outside_0_x128=words[2],
            fee_growth_outside_1_x128=words[3],
        )

    def observe(self, pool_id: str, seconds_agos: Sequence[int]) -> List[int]:
        args = [encode_word(32), encode_word(len(seconds_agos))]
        args.extend(encode_word(seconds_ago) for seconds_ago in seconds_agos)
        try:
            words = self.client.call_words(pool_id, OBSERVE_SELECTOR, *args)
        except RpcRevert as e:
            if e.reason.strip() == "OLD" or e.reason.endswith(": OLD"):
                raise InsufficientHistory(pool_id, max(seconds_agos)) from e
            raise

        # (int56[] tickCumulatives, uint160[] secondsPerLiquidityCumulativeX128s)
        offset = words[0] // 32
        length = words[offset]
        return [to_signed(word) for word in words[offset + 1:offset + 1 + length]]


class RpcPositionReader:
    """NonfungiblePositionManager에서 포지션을 읽는 PositionReader"""

    def __init__(self, client: RpcClient, position_manager: str, factory: str):
        self.client = client
        self.position_manager = position_manager
        self.factory = factory
        self._pools: Dict[tuple, str] = {}

    def owner_of(self, position_id: int) -> str:
        words = self.client.call_words(self.position_manager, OWNER_OF_SELECTOR, encode_word(position_id))
        return to_address(words[0])

    def pool_for(self, token0: str, token1: str, fee: int) -> str:
        # pool 주소는 불변이므로 캐시
        key = (token0, token1, fee)
        if key not in self._pools:
            words = self.client.call_words(
                self.factory, GET_POOL_SELECTOR,
                encode_address(token0), encode_address(token1), encode_word(fee)
            )
            self._pools[key] = to_address(words[0])
        return self._pools[key]

    def position_info(self, position_id: int) -> PositionRecord:
        # nonce, operator, token0, token1, fee, tickLower, tickUpper, liquidity,
        # feeGrowthInside0LastX128, feeGrowthInside1LastX128, tokensOwed0, tokensOwed1
        words = self.client.call_words(self.position_manager, POSITIONS_SELECTOR, encode_word(position_id))
        token0 = to_address(words[2])
        token1 = to_address(words[3])
        fee = words[4]
        return PositionRecord(
            pool_id=self.pool_for(token0, token1, fee),
            token0=token0,
            token1=token1,
            fee=fee,
            tick_lower=to_signed(words[5]),
            tick_upper=to_signed(words[6]),
            liquidity=words[7],
            fee_growth_inside_0_last_x128=words[8],
            fee_growth_inside_1_last_x128=words[9],
            tokens_owed_0=words[10],
            tokens_owed_1=words[11],
        )
