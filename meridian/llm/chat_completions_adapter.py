# chat_completions_adapter.py
# =============================================================================
# OpenAI Chat Completions API 适配器
#
# 职责：
#   - 将引擎的多轮调用 (system_prompt, messages) 转换为
#     Chat Completions API 的 HTTP 请求
#   - 解析返回结构，提取文本内容与 token 用量
#   - 兼容标准 OpenAI、国内 OpenAI 兼容端点与 Azure OpenAI
#
# URL 兼容性：
#   1. 基础 URL：https://api.deepseek.com/v1 -> 自动追加 /chat/completions
#   2. 完整路径或带 query 参数的 URL -> 直接使用
#
# 认证方式：
#   - 标准端点：Authorization: Bearer <key>
#   - Azure 端点：api-key: <key>（自动检测 Azure 域名）
#
# 请求格式：
#   {"model": "xxx", "messages": [{"role": "system", ...}, {"role": "user", ...},
#                                 {"role": "assistant", ...}, ...]}
#   -> response["choices"][0]["message"]["content"]
#   -> response["usage"]["prompt_tokens" / "completion_tokens"]
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import httpx

from meridian.primitives.models import Completion, ModelUsage

logger = logging.getLogger(__name__)

_AZURE_DOMAIN_SUFFIXES = (
    "cognitiveservices.azure.com",
    "openai.azure.com",
    "services.ai.azure.com",
)


class ChatCompletionsAdapter:
    """OpenAI Chat Completions API 适配器（httpx 异步直连）。"""

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        max_retries: int = 3,
        api_version: Optional[str] = None,
    ):
        """初始化适配器。

        Args:
            url: API 端点 URL（基础 URL 会自动补全 /chat/completions）。
            api_key: API 密钥。
            model: 模型名称。
            temperature: 生成温度。
            max_tokens: 最大输出 token 数。
            timeout: 单次请求超时（秒）。超时按失败处理并重试。
            max_retries: 失败后的最大重试次数。
            api_version: Azure API 版本（仅 Azure 域名生效）。
        """
        self._endpoint = self._resolve_endpoint(url, api_version)
        self._is_azure = self._detect_azure(url)
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_retries = max_retries

        if self._is_azure:
            logger.info("检测到 Azure 端点，将使用 api-key 认证头: %s", self._endpoint)

    async def call(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
    ) -> Completion:
        """调用 Chat Completions API。

        Args:
            system_prompt: 系统提示词。
            messages: 按时间顺序排列的 user / assistant 消息。

        Returns:
            Completion(text, usage)。

        Raises:
            RuntimeError: 所有重试均失败。
        """
        request_body = self._build_request(system_prompt, messages)

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self._is_azure:
            headers["api-key"] = self._api_key
        else:
            headers["Authorization"] = f"Bearer {self._api_key}"

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
                    "Chat Completions API 调用失败 (HTTP %d)，第 %d/%d 次: %s",
                    e.response.status_code,
                    attempt + 1,
                    self._max_retries + 1,
                    e.response.text[:200],
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Chat Completions API 请求异常，第 %d/%d 次: %s",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                )
            except ValueError as e:
                last_error = e
                logger.warning(
                    "Chat Completions API 响应无法解析，第 %d/%d 次: %s",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                )

        raise RuntimeError(
            f"Chat Completions API 调用在 {self._max_retries + 1} 次尝试后仍失败: "
            f"{last_error}"
        )

    # =========================================================================
    # URL 与认证检测
    # =========================================================================

    @staticmethod
    def _resolve_endpoint(url: str, api_version: Optional[str] = None) -> str:
        """路径不含 /chat/completions 时追加；Azure 缺 api-version 时补上。"""
        parsed = urlparse(url)

        path = parsed.path
        if "/chat/completions" not in path:
            path = path.rstrip("/") + "/chat/completions"

        query_params = parse_qs(parsed.query, keep_blank_values=True)
        if api_version and "api-version" not in query_params:
            hostname = parsed.hostname or ""
            if any(hostname.endswith(d) for d in _AZURE_DOMAIN_SUFFIXES):
                query_params["api-version"] = [api_version]

        return urlunparse(
            parsed._replace(path=path, query=urlencode(query_params, doseq=True))
        )

    @staticmethod
    def _detect_azure(url: str) -> bool:
        hostname = urlparse(url).hostname or ""
        return any(hostname.endswith(d) for d in _AZURE_DOMAIN_SUFFIXES)

    # =========================================================================
    # 请求构建与响应解析
    # =========================================================================

    def _build_request(
        self, system_prompt: str, messages: List[Dict[str, str]]
    ) -> Dict[str, Any]:
        payload: List[Dict[str, str]] = []
        if system_prompt:
            payload.append({"role": "system", "content": system_prompt})
        payload.extend(
            {"role": m["role"], "content": m["content"]} for m in messages
        )

        body: Dict[str, Any] = {
            "model": self._model,
            "messages": payload,
            "temperature": self._temperature,
        }
        if self._max_tokens is not None:
            body["max_tokens"] = self._max_tokens
        return body

    def _parse_response(self, response_data: Dict[str, Any]) -> Completion:
        """提取 choices[0].message.content 与 usage。内容为空视为失败。"""
        text = None
        choices = response_data.get("choices") or []
        if choices:
            text = (choices[0].get("message") or {}).get("content")
        if not text:
            raise ValueError(
                "响应中未找到文本内容: "
                + json.dumps(response_data, ensure_ascii=False)[:300]
            )

        usage = response_data.get("usage") or {}
        return Completion(
            text=text,
            usage=ModelUsage(
                input_tokens=int(usage.get("prompt_tokens", 0) or 0),
                output_tokens=int(usage.get("completion_tokens", 0) or 0),
                model=response_data.get("model") or self._model,
            ),
        )

    @classmethod
    def from_endpoint_config(cls, config) -> ChatCompletionsAdapter:
        """从 ModelEndpointConfig 创建适配器实例。

        Raises:
            ValueError: 缺少 url 或 api_key。
        """
        if not config.url:
            raise ValueError(
                "Chat Completions API 模式需要显式配置 url，请在 llm_config 中设置 url。"
            )
        if not config.api_key:
            raise ValueError(
                "Chat Completions API 模式需要显式配置 api_key，"
                "请在 llm_config 中设置 api_key 或通过环境变量提供。"
            )

        return cls(
            url=config.url,
            api_key=config.api_key,
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout or 120.0,
            max_retries=config.max_retries,
            api_version=config.api_version,
        )
