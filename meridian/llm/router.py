# router.py
# =============================================================================
# LLM 模型路由模块
#
# 职责：
#   - 根据调用角色（interviewer / reflection / enhancement / synthesis）
#     选择并缓存 LLM 适配器（ChatCompletions / Anthropic）
#   - 启动时输出配置摘要（隐藏 API Key）
#
# 用量控制不在本模块：每次模型请求之前由 UsageGuard 按租户检查额度，
# 见 meridian/llm/usage.py 与 meridian/llm/caller.py。
#
# 配置优先级（高→低）：代码传入 llm_config > llm_config.yaml > 环境变量。
# 不提供任何硬编码默认模型，缺失时抛出 ConfigurationError。
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """LLM 配置缺失或不完整时抛出的异常。"""
    pass


class ModelRouter:
    """模型路由器: 按角色创建并缓存适配器。

    所有适配器暴露统一接口：
        async call(system_prompt, messages) -> Completion
    """

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
    ) -> None:
        """初始化路由器。

        Args:
            llm_config: 模型配置字典（最高优先级），格式参见 LLMConfigLoader。
                - 简写: {"interviewer": "gpt-4o"}
                - 完整: {"synthesis": {"model_name": "claude-opus-4-1",
                                        "api_key": "sk-ant-xxx"}}
            config_file: LLM 配置文件路径（可选，不传则自动搜索）。
        """
        from meridian.llm.config import LLMConfigLoader

        self._config_loader = LLMConfigLoader(
            llm_config=llm_config, config_file=config_file
        )
        self._adapter_cache: Dict[str, Any] = {}

        for role, info in self._config_loader.summary().items():
            logger.info(
                "模型路由: %s → %s/%s (mode=%s, url=%s, key=%s)",
                role,
                info["platform"],
                info["model"],
                info["api_mode"],
                info["url"],
                info["api_key"],
            )

    @property
    def config_loader(self) -> Any:
        return self._config_loader

    def get_endpoint_config(self, role: str):
        """获取角色的 ModelEndpointConfig。缺失时抛出 ConfigurationError。"""
        return self._config_loader.resolve(role)

    def get_model(self, role: str) -> str:
        return self._config_loader.resolve(role).model_name

    def get_adapter(self, role: str) -> Any:
        """获取角色对应的适配器实例（带缓存）。

        Raises:
            ConfigurationError: 角色配置缺失或 api_mode 不受支持。
        """
        if role in self._adapter_cache:
            return self._adapter_cache[role]

        config = self._config_loader.resolve(role)
        adapter = self._create_adapter(config)
        self._adapter_cache[role] = adapter
        logger.info(
            "LLM 适配器已创建: role=%s, api_mode=%s, model=%s, url=%s",
            role,
            config.api_mode,
            config.model_name,
            config.url or "(default)",
        )
        return adapter

    def register_adapter(self, role: str, adapter: Any) -> None:
        """为角色直接注入适配器（测试或自定义后端）。"""
        self._adapter_cache[role] = adapter

    @staticmethod
    def _create_adapter(config) -> Any:
        if config.api_mode == "chat_completions":
            from meridian.llm.chat_completions_adapter import (
                ChatCompletionsAdapter,
            )
            return ChatCompletionsAdapter.from_endpoint_config(config)

        if config.api_mode == "anthropic":
            from meridian.llm.anthropic_adapter import AnthropicAdapter
            return AnthropicAdapter.from_endpoint_config(config)

        raise ConfigurationError(
            f"不支持的 api_mode: '{config.api_mode}'。"
            f"仅支持: chat_completions, anthropic。"
        )

    def clear_adapter_cache(self) -> None:
        self._adapter_cache.clear()
