# llm/__init__.py
# 模型路由、租户用量守卫、LLM 配置管理与适配器 / Model routing, usage guard, LLM config & adapters

from meridian.llm.anthropic_adapter import AnthropicAdapter
from meridian.llm.caller import make_model_caller
from meridian.llm.chat_completions_adapter import ChatCompletionsAdapter
from meridian.llm.config import (
    LLMConfigLoader,
    ModelEndpointConfig,
)
from meridian.llm.router import (
    ConfigurationError,
    ModelRouter,
)
from meridian.llm.usage import (
    Allowed,
    Denied,
    InMemoryUsageLedger,
    TenantUsage,
    UsageGuard,
)

__all__ = [
    "Allowed",
    "AnthropicAdapter",
    "ChatCompletionsAdapter",
    "ConfigurationError",
    "Denied",
    "InMemoryUsageLedger",
    "LLMConfigLoader",
    "ModelEndpointConfig",
    "ModelRouter",
    "TenantUsage",
    "UsageGuard",
    "make_model_caller",
]
