# anthropic_adapter.py
# =============================================================================
# Anthropic Messages API 适配器
#
# 职责：
#   - 将引擎的多轮调用 (system_prompt, messages) 转换为 Messages API 请求
#   - 合并相邻同角色消息（Messages API 要求 user / assistant 交替）
#   - 提取文本内容与 token 用量
#
# 请求格式：
#   {"model": "...", "max_tokens": 4096, "system": "...",
#    "messages": [{"role": "user", "content": "..."}, ...]}
#   -> response["content"][i]["text"]（type == "text"）
#   -> response["usage"]["input_tokens" / "output_tokens"]
#
# 认证方式：x-api-key + anthropic-version
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from meridian.primitives.models import Completion, ModelUsage

logger = logging.getLogger(__name__)

_DEFAULT_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_ANTHROPIC_VERSION = "2023-06-01"

# 会话开头必须是 user 消息；以 assistant 开场时补一个占位 user 消息
_LEADING_USER_PLACEHOLDER = "(conversation start)"


class AnthropicAdapter:
    """Anthropic Messages API 适配器（httpx 异步直连）。"""

    def __init__(
        self,
        api_key: str,
        model: str,
        url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        max_retries: int = 3,
    ):
        self._endpoint = self._resolve_endpoint(url)
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_retries = max_retries

    async def call(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
    ) -> Completion:
        """调用 Messages API。

        Raises:
            RuntimeError: 所有重试均失败。
        """
        request_body = self._build_request(system_prompt, messages)

        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": _ANTHROPIC_VERSION,
        }

        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        self._endpoint,
                        headers=headers,
                        json=request_body,
                    )
                    response.raise_for_status()
                    return self._parse_response(response.json())

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "Anthropic Messages API 调用失败 (HTTP %d)，第 %d/%d 次: %s",
                    e.response.status_code,
                    attempt + 1,
                    self._max_retries + 1,
                    e.response.text[:200],
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Anthropic Messages API 请求异常，第 %d/%d 次: %s",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                )
            except ValueError as e:
                last_error = e
                logger.warning(
                    "Anthropic Messages API 响应无法解析，第 %d/%d 次: %s",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                )

        raise RuntimeError(
            f"Anthropic Messages API 调用在 {self._max_retries + 1} 次尝试后仍失败: "
            f"{last_error}"
        )

    @staticmethod
    def _resolve_endpoint(url: Optional[str]) -> str:
        """空 URL 使用官方端点；路径不含 /messages 时追加。"""
        if not url:
            return _DEFAULT_ANTHROPIC_URL

        from urllib.parse import urlparse, urlunparse

        parsed = urlparse(url)
        path = parsed.path
        if "/messages" not in path:
            path = path.rstrip("/") + "/messages"
        return urlunparse(parsed._replace(path=path))

    @staticmethod
    def _normalize_messages(
        messages: List[Dict[str, str]],
    ) -> List[Dict[str, str]]:
        """合并相邻同角色消息，保证以 user 开头、角色交替。"""
        merged: List[Dict[str, str]] = []
        for m in messages:
            role = m["role"]
            if role not in ("user", "assistant"):
                continue
            if merged and merged[-1]["role"] == role:
                merged[-1] = {
                    "role": role,
                    "content": merged[-1]["content"] + "\n\n" + m["content"],
                }
            else:
                merged.append({"role": role, "content": m["content"]})
        if not merged or merged[0]["role"] != "user":
            merged.insert(0, {"role": "user", "content": _LEADING_USER_PLACEHOLDER})
        return merged

    def _build_request(
        self, system_prompt: str, messages: List[Dict[str, str]]
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": self._normalize_messages(messages),
            "temperature": self._temperature,
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    def _parse_response(self, response_data: Dict[str, Any]) -> Completion:
        text = ""
        content = response_data.get("content") or []
        if isinstance(content, list):
            text = "".join(
                block.get("text", "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            )
        if not text:
            raise ValueError(
                "响应中未找到文本内容: "
                + json.dumps(response_data, ensure_ascii=False)[:300]
            )

        usage = response_data.get("usage") or {}
        return Completion(
            text=text,
            usage=ModelUsage(
                input_tokens=int(usage.get("input_tokens", 0) or 0),
                output_tokens=int(usage.get("output_tokens", 0) or 0),
                model=response_data.get("model") or self._model,
            ),
        )

    @classmethod
    def from_endpoint_config(cls, config) -> AnthropicAdapter:
        """从 ModelEndpointConfig 创建适配器实例。

        Raises:
            ValueError: 缺少 api_key。
        """
        if not config.api_key:
            raise ValueError(
                "Anthropic API 模式需要显式配置 api_key，"
                "请在 llm_config 中设置 api_key 或通过环境变量 ANTHROPIC_API_KEY 提供。"
            )

        return cls(
            api_key=config.api_key,
            model=config.model_name,
            url=config.url,
            temperature=config.temperature,
            max_tokens=config.max_tokens or 4096,
            timeout=config.timeout or 120.0,
            max_retries=config.max_retries,
        )
