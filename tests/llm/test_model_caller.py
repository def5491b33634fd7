# test_model_caller.py
# =============================================================================
# make_model_caller 测试 / Tenant-bound model caller tests
# - 调用前检查额度，拒绝时不发出请求 / allowance checked before the request
# - 适配器失败统一为 ModelUnavailable / adapter failures become ModelUnavailable
# - 成功后记录 token 用量 / usage recorded after success
# =============================================================================

from unittest.mock import AsyncMock

import pytest

from meridian.errors import ModelUnavailable, UsageLimitExceeded
from meridian.llm.caller import make_model_caller
from meridian.llm.router import ConfigurationError, ModelRouter
from meridian.llm.usage import InMemoryUsageLedger, UsageGuard
from meridian.primitives.models import Completion, ModelUsage


def _router_with(adapter):
    router = ModelRouter(llm_config={})
    router.register_adapter("interviewer", adapter)
    return router


class TestMakeModelCaller:

    @pytest.mark.asyncio
    async def test_passes_prompt_and_messages_to_adapter(self):
        adapter = AsyncMock()
        adapter.call.return_value = Completion("Hello", ModelUsage(10, 5))
        caller = make_model_caller(_router_with(adapter), None, "interviewer", "t1")

        result = await caller(system_prompt="sys", messages=[{"role": "user", "content": "hi"}])

        assert result.text == "Hello"
        adapter.call.assert_awaited_once_with("sys", [{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_records_usage_after_success(self):
        adapter = AsyncMock()
        adapter.call.return_value = Completion("ok", ModelUsage(input_tokens=40, output_tokens=2))
        ledger = InMemoryUsageLedger(limits={"t1": 1000})
        caller = make_model_caller(_router_with(adapter), UsageGuard(ledger), "interviewer", "t1")

        await caller(system_prompt="", messages=[])

        assert ledger.get_usage("t1").used_tokens == 42

    @pytest.mark.asyncio
    async def test_denied_tenant_never_reaches_adapter(self):
        adapter = AsyncMock()
        ledger = InMemoryUsageLedger(limits={"t1": 10})
        ledger.record_usage("t1", ModelUsage(input_tokens=10))
        caller = make_model_caller(_router_with(adapter), UsageGuard(ledger), "interviewer", "t1")

        with pytest.raises(UsageLimitExceeded):
            await caller(system_prompt="", messages=[])
        adapter.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_adapter_failure_becomes_model_unavailable(self):
        adapter = AsyncMock()
        adapter.call.side_effect = RuntimeError("timeout after 3 attempts")
        ledger = InMemoryUsageLedger(limits={"t1": 1000})
        caller = make_model_caller(_router_with(adapter), UsageGuard(ledger), "interviewer", "t1")

        with pytest.raises(ModelUnavailable) as exc_info:
            await caller(system_prompt="", messages=[])
        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert ledger.get_usage("t1").used_tokens == 0

    @pytest.mark.asyncio
    async def test_missing_configuration_propagates(self):
        caller = make_model_caller(ModelRouter(llm_config={}), None, "synthesis", "t1")
        with pytest.raises(ConfigurationError):
            await caller(system_prompt="", messages=[])
