import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage, SystemMessage

from adaptive_chat.errors import InvalidApiKey, ProviderError
from adaptive_chat.settings import Settings, get_settings

logger = logging.getLogger("adaptive_chat.llm")


class ProviderId(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"

    @classmethod
    def parse(cls, value) -> "ProviderId":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        # 'gpt-4o' etc. select OpenAI the same way a bare 'openai' does
        if raw.startswith(("gpt-", "gpt4", "openai")):
            return cls.OPENAI
        return cls.GEMINI


@dataclass(frozen=True)
class ModelParams:
    temperature: float = 0.7
    max_output_tokens: int = 1000


@dataclass
class ProviderReply:
    text: str
    usage: Dict[str, int] = field(default_factory=dict)


_AUTH_ERROR_MARKERS = (
    "api_key_invalid",
    "api key not valid",
    "invalid api key",
    "incorrect api key",
    "unauthenticated",
)

# a bare 401 only counts next to an "unauthorized" reason
_UNAUTHORIZED_STATUS = re.compile(
    r"\b401\b.*\bunauthori[sz]ed\b|\bunauthori[sz]ed\b.*\b401\b",
    re.IGNORECASE,
)


def _is_auth_error(e: Exception) -> bool:
    if isinstance(e, openai.AuthenticationError):
        return True
    if getattr(e, "status_code", None) == 401 or getattr(e, "code", None) == 401:
        return True
    msg = str(e)
    if _UNAUTHORIZED_STATUS.search(msg):
        return True
    msg = msg.lower()
    return any(marker in msg for marker in _AUTH_ERROR_MARKERS)


def classify_provider_error(e: Exception) -> Exception:
    """
    Map any SDK/transport failure to InvalidApiKey or ProviderError.
    """
    if isinstance(e, (InvalidApiKey, ProviderError)):
        return e
    if _is_auth_error(e):
        return InvalidApiKey("Invalid API key. Please check your API key and try again.")
    return ProviderError(f"Failed to generate response: {type(e).__name__}: {e}")


class BaseProvider:
    """
    Common usage accounting + error classification for all backends.

        reply = provider.generate(system_prompt, history, api_key, params, user_message="...")

    `history` is a list of LangChain messages already trimmed by the caller.
    No retries here: failures surface immediately.
    """

    provider_id: ProviderId
    last_usage: Optional[Dict[str, int]]

    def __init__(self, model_name: str, *, timeout: float | None = None):
        self.model_name = model_name
        self._timeout = timeout
        self.last_usage = None

    def _merge_usage(self, inc: Optional[Dict[str, int]]) -> None:
        if not inc:
            return
        if self.last_usage is None:
            self.last_usage = dict(inc)
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _invoke_once(
        self,
        prompt: str,
        history: List[BaseMessage],
        api_key: str,
        params: ModelParams,
        user_message: Optional[str],
    ) -> str:
        raise NotImplementedError

    def generate(
        self,
        prompt: str,
        history: List[BaseMessage],
        api_key: str,
        params: Optional[ModelParams] = None,
        user_message: Optional[str] = None,
    ) -> ProviderReply:
        if not api_key or not str(api_key).strip():
            raise InvalidApiKey("API key is required")

        params = params or ModelParams()
        self.last_usage = None
        logger.debug(
            "[%s] model=%s history=%s temperature=%s max_tokens=%s",
            self.provider_id.value, self.model_name, len(history),
            params.temperature, params.max_output_tokens,
        )
        try:
            text = self._invoke_once(prompt, history, str(api_key).strip(), params, user_message)
        except Exception as e:
            err = classify_provider_error(e)
            logger.warning("[%s] %s: %s", self.provider_id.value, type(err).__name__, e)
            raise err from e

        logger.debug("[%s] usage=%s", self.provider_id.value, self.last_usage)
        return ProviderReply(text=(text or "").strip(), usage=dict(self.last_usage or {}))


class GeminiProvider(BaseProvider):
    """
    Gemini through LangChain's ChatGoogleGenerativeAI (per-call API key).
    """

    provider_id = ProviderId.GEMINI

    def _build_chat_model(self, api_key: str, params: ModelParams) -> ChatGoogleGenerativeAI:
        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "google_api_key": api_key,
            "temperature": params.temperature,
            "max_output_tokens": params.max_output_tokens,
            "max_retries": 0,
        }
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        return ChatGoogleGenerativeAI(**kwargs)

    def _merge_langchain_usage(self, usage_metadata: Any) -> None:
        if not usage_metadata:
            return

        def get(k: str) -> int:
            if isinstance(usage_metadata, dict):
                return int(usage_metadata.get(k, 0) or 0)
            return int(getattr(usage_metadata, k, 0) or 0)

        self._merge_usage({
            "prompt_token_count": get("input_tokens"),
            "candidates_token_count": get("output_tokens"),
            "total_token_count": get("total_tokens"),
        })

    def _invoke_once(self, prompt, history, api_key, params, user_message) -> str:
        chat_model = self._build_chat_model(api_key, params)

        messages: List[BaseMessage] = [SystemMessage(content=prompt), *history]
        if user_message:
            messages.append(HumanMessage(content=user_message))

        resp = chat_model.invoke(messages)
        self._merge_langchain_usage(getattr(resp, "usage_metadata", None))

        if isinstance(resp, str):
            return resp
        content = getattr(resp, "content", str(resp))
        if isinstance(content, list):
            # multi-part replies: keep the text parts only
            content = "".join(
                part if isinstance(part, str) else str(part.get("text", ""))
                for part in content
                if isinstance(part, (str, dict))
            )
        return content


class OpenAIProvider(BaseProvider):
    """
    OpenAI Responses API with input=[{role, content}, ...].
    """

    provider_id = ProviderId.OPENAI

    def _build_client(self, api_key: str) -> OpenAI:
        client_kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": 0}
        if self._timeout is not None:
            client_kwargs["timeout"] = self._timeout
        return OpenAI(**client_kwargs)

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, AIMessage):
                role = "assistant"
            elif isinstance(m, SystemMessage):
                role = "developer"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    def _merge_openai_usage(self, resp: Any) -> None:
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        details = getattr(usage, "input_tokens_details", None)
        self._merge_usage({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
            "cached_content_token_count": getattr(details, "cached_tokens", 0) if details else 0,
        })

    def _invoke_once(self, prompt, history, api_key, params, user_message) -> str:
        client = self._build_client(api_key)

        oai_messages = self._to_openai_messages(history)
        if user_message:
            oai_messages.append({"role": "user", "content": user_message})

        resp = client.responses.create(
            model=self.model_name,
            instructions=prompt,
            input=oai_messages,
            temperature=params.temperature,
            max_output_tokens=params.max_output_tokens,
        )
        self._merge_openai_usage(resp)

        return getattr(resp, "output_text", "") or ""


PROVIDER_CLASSES = {
    ProviderId.GEMINI: GeminiProvider,
    ProviderId.OPENAI: OpenAIProvider,
}


_MODEL_NAME_PREFIXES = {
    ProviderId.GEMINI: ("gemini-",),
    ProviderId.OPENAI: ("gpt-",),
}


def requested_model(value) -> Optional[str]:
    """
    The concrete model a request names ("gpt-4o-mini", "gemini-2.5-pro"), or
    None when it only names a provider ("openai", "gemini").
    """
    if value is None or isinstance(value, ProviderId):
        return None
    raw = str(value).strip()
    pid = ProviderId.parse(raw)
    if raw.lower().startswith(_MODEL_NAME_PREFIXES[pid]):
        return raw
    return None


def get_provider(provider_id=None, settings: Settings | None = None) -> BaseProvider:
    """
    `provider_id` is a provider id or a model name; a model name is served
    as-is, a bare provider id by its configured default model.
    """
    settings = settings or get_settings()
    pid = ProviderId.parse(provider_id)
    model_name = requested_model(provider_id) or settings.provider_models.get(pid.value)
    return PROVIDER_CLASSES[pid](model_name, timeout=settings.llm_timeout)


# -----------------------
# History helpers
# -----------------------

def history_to_messages(history) -> List[BaseMessage]:
    """
    Convert [{role, content}, ...] into LangChain messages.
    Anything that is not an assistant turn is sent as a user turn.
    """
    out: List[BaseMessage] = []
    for item in (history or []):
        if isinstance(item, BaseMessage):
            out.append(item)
            continue
        if not isinstance(item, dict):
            continue
        role = (item.get("role") or "").strip().lower()
        content = item.get("content", "")
        if not isinstance(content, str):
            content = str(content)

        if role == "assistant":
            out.append(AIMessage(content=content))
        else:
            out.append(HumanMessage(content=content))
    return out


def trim_history(history: list, limit: int) -> list:
    """Keep only the most recent `limit` entries."""
    if limit <= 0:
        return []
    return list(history or [])[-limit:]
