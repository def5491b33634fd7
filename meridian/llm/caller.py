# caller.py
# =============================================================================
# 按角色与租户绑定的模型调用函数
#
# 每次请求的顺序固定：
#   1. UsageGuard.require(tenant_id): 额度不足抛出 UsageLimitExceeded，
#      此时不会发出任何模型请求
#   2. router.get_adapter(role).call(system_prompt, messages)
#   3. 适配器失败（重试耗尽、超时）统一转换为 ModelUnavailable
#   4. 成功后记录 token 用量
# =============================================================================

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from meridian.errors import ModelUnavailable
from meridian.llm.router import ConfigurationError
from meridian.llm.usage import UsageGuard
from meridian.primitives.models import Completion

logger = logging.getLogger(__name__)

ModelCaller = Callable[..., Awaitable[Completion]]


def make_model_caller(
    router,
    guard: Optional[UsageGuard],
    role: str,
    tenant_id: str,
) -> ModelCaller:
    """创建指定角色、指定租户的模型调用函数。

    返回 async def(*, system_prompt, messages) -> Completion 签名的协程函数，
    供访谈、反思、增强与汇总使用。
    """
    guard = guard or UsageGuard()
    call_count = 0

    async def caller(
        *,
        system_prompt: str = "",
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> Completion:
        nonlocal call_count
        guard.require(tenant_id)

        call_count += 1
        logger.info(f"[{role}] 租户 {tenant_id} 模型调用 #{call_count}")
        try:
            adapter = router.get_adapter(role)
            completion = await adapter.call(system_prompt, list(messages or []))
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning(f"[{role}] 模型调用失败: {exc}")
            raise ModelUnavailable(f"model call for role '{role}' failed: {exc}") from exc

        guard.record(tenant_id, completion.usage)
        return completion

    return caller
