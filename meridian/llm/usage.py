# usage.py
# =============================================================================
# 租户用量守卫 / Tenant usage guard
#
# 职责：
#   - 每次模型请求之前检查租户额度：Allowed / Denied(detail)
#   - 模型调用成功后记录 token 用量
#   - 用量数据缺失（查询失败或无记录）时放行并记录日志（fail-open）
#
# 额度约定与调用次数预算一致：limit <= 0 表示不限制。
# 用量计数归 UsageOracle（存储协作方）所有，本模块只读写其接口。
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Union

from meridian.errors import UsageLimitExceeded
from meridian.primitives.models import ModelUsage

logger = logging.getLogger(__name__)

DENIED_REASON = (
    "Usage limit reached. Please upgrade your plan or wait for your next "
    "billing cycle."
)


@dataclass
class TenantUsage:
    """租户当前计费周期的用量快照。limit <= 0 表示不限制。"""

    used_tokens: int = 0
    limit: int = 0
    retry_after_seconds: Optional[int] = None  # 距下个计费周期的秒数

    @property
    def is_unlimited(self) -> bool:
        return self.limit <= 0

    @property
    def is_exceeded(self) -> bool:
        if self.is_unlimited:
            return False
        return self.used_tokens >= self.limit

    @property
    def remaining(self) -> int:
        """剩余额度。不限制模式下返回 -1。"""
        if self.is_unlimited:
            return -1
        return max(0, self.limit - self.used_tokens)

    @property
    def usage_ratio(self) -> float:
        if self.is_unlimited:
            return 0.0
        return self.used_tokens / self.limit

    def to_dict(self) -> dict:
        return {
            "used_tokens": self.used_tokens,
            "limit": self.limit,
            "unlimited": self.is_unlimited,
            "remaining": self.remaining,
            "usage_ratio": round(self.usage_ratio, 4),
            "retry_after_seconds": self.retry_after_seconds,
        }


@dataclass(frozen=True)
class Allowed:
    tenant_id: str
    remaining: int = -1
    allowed: bool = True


@dataclass(frozen=True)
class Denied:
    tenant_id: str
    reason: str
    used_tokens: int
    limit: int
    retry_after_seconds: Optional[int] = None
    allowed: bool = False


Allowance = Union[Allowed, Denied]


class UsageOracle(Protocol):
    """用量存储协作方接口。"""

    def get_usage(self, tenant_id: str) -> Optional[TenantUsage]:
        ...

    def record_usage(self, tenant_id: str, usage: ModelUsage) -> None:
        ...


class InMemoryUsageLedger:
    """进程内用量账本: UsageOracle 的参考实现。

    未登记的租户 get_usage 返回 None（由守卫按 fail-open 处理）。
    """

    def __init__(
        self,
        limits: Optional[Dict[str, int]] = None,
        default_limit: Optional[int] = None,
    ) -> None:
        self._limits: Dict[str, int] = dict(limits or {})
        self._used: Dict[str, int] = {}
        self._default_limit = default_limit

    def set_limit(self, tenant_id: str, limit: int) -> None:
        self._limits[tenant_id] = limit

    def get_usage(self, tenant_id: str) -> Optional[TenantUsage]:
        limit = self._limits.get(tenant_id, self._default_limit)
        if limit is None:
            return None
        return TenantUsage(used_tokens=self._used.get(tenant_id, 0), limit=limit)

    def record_usage(self, tenant_id: str, usage: ModelUsage) -> None:
        self._used[tenant_id] = self._used.get(tenant_id, 0) + usage.total_tokens

    def reset(self, tenant_id: str) -> None:
        self._used.pop(tenant_id, None)


class UsageGuard:
    """每次模型请求之前的额度检查。

    不传 oracle 时视为不限制（本地开发、测试）。
    """

    def __init__(self, oracle: Optional[UsageOracle] = None) -> None:
        self._oracle = oracle

    def check_allowance(self, tenant_id: str) -> Allowance:
        if self._oracle is None:
            return Allowed(tenant_id=tenant_id)

        try:
            usage = self._oracle.get_usage(tenant_id)
        except Exception as exc:
            logger.warning("租户 %s 用量查询失败，按放行处理: %s", tenant_id, exc)
            return Allowed(tenant_id=tenant_id)

        if usage is None:
            logger.info("租户 %s 无用量记录，按放行处理", tenant_id)
            return Allowed(tenant_id=tenant_id)

        if usage.is_exceeded:
            logger.warning(
                "租户 %s 用量已达上限 (%d/%d)",
                tenant_id, usage.used_tokens, usage.limit,
            )
            return Denied(
                tenant_id=tenant_id,
                reason=DENIED_REASON,
                used_tokens=usage.used_tokens,
                limit=usage.limit,
                retry_after_seconds=usage.retry_after_seconds,
            )
        return Allowed(tenant_id=tenant_id, remaining=usage.remaining)

    def require(self, tenant_id: str) -> Allowed:
        """检查额度，不足时抛出 UsageLimitExceeded。"""
        allowance = self.check_allowance(tenant_id)
        if isinstance(allowance, Denied):
            raise UsageLimitExceeded(
                f"tenant {tenant_id} is over its usage limit "
                f"({allowance.used_tokens}/{allowance.limit})",
                detail=allowance,
            )
        return allowance

    def record(self, tenant_id: str, usage: ModelUsage) -> None:
        """记录一次成功调用的用量。写入失败只记录日志，不影响已完成的回合。"""
        if self._oracle is None:
            return
        try:
            self._oracle.record_usage(tenant_id, usage)
        except Exception as exc:
            logger.warning("租户 %s 用量记录失败: %s", tenant_id, exc)
