from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from chat.errors import ConfigError, UpstreamError
from config.settings import Settings


logger = logging.getLogger("gemini_gateway.gemini")


class ChatSession(Protocol):
    def send_message(self, text: str) -> str:
        ...


SessionFactory = Callable[[], ChatSession]


def reply_text(message: BaseMessage) -> str:
    """Flatten a model reply into plain text.

    Gemini replies arrive either as a plain string or as a list of parts,
    where text parts are strings or ``{"type": "text", "text": ...}`` dicts.
    """
    content = message.content
    if isinstance(content, str):
        return content
    chunks: List[str] = []
    for part in content or []:
        if isinstance(part, str):
            chunks.append(part)
        elif isinstance(part, dict) and part.get("type", "text") == "text":
            chunks.append(str(part.get("text") or ""))
    return "".join(chunks)


class GeminiChatSession:
    """One user's conversation with Gemini.

    The full history is replayed on every turn so follow-up messages keep
    their context. Turns of the same session are serialised.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        system_prompt: Optional[str] = None,
        history_turns: int = 0,
    ) -> None:
        self._llm = llm
        self._system_prompt = system_prompt
        self._history_turns = history_turns
        self._history: List[BaseMessage] = []
        self._lock = threading.Lock()

    @property
    def history(self) -> List[BaseMessage]:
        with self._lock:
            return list(self._history)

    def _prompt(self, text: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if self._system_prompt:
            messages.append(SystemMessage(content=self._system_prompt))
        messages.extend(self._history)
        messages.append(HumanMessage(content=text))
        return messages

    def send_message(self, text: str) -> str:
        with self._lock:
            try:
                reply = self._llm.invoke(self._prompt(text))
            except Exception as exc:
                raise UpstreamError(str(exc)) from exc

            answer = reply_text(reply)
            self._history.append(HumanMessage(content=text))
            self._history.append(AIMessage(content=answer))
            if self._history_turns > 0:
                # a turn is one human message plus one reply
                self._history = self._history[-2 * self._history_turns:]
            return answer


def build_llm(settings: Settings) -> BaseChatModel:
    if not settings.gemini_api_key:
        raise ConfigError("GEMINI_API_KEY environment variable not set")

    options: Dict[str, Any] = {}
    if settings.temperature is not None:
        options["temperature"] = settings.temperature
    if settings.top_p is not None:
        options["top_p"] = settings.top_p

    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.gemini_api_key,
        **options,
    )


def build_session_factory(settings: Settings) -> SessionFactory:
    """Return a callable that opens a fresh Gemini conversation.

    All sessions share one model client; each keeps its own history.
    """
    llm = build_llm(settings)
    logger.info("Gemini client ready: model=%s", settings.gemini_model)

    def create_session() -> ChatSession:
        return GeminiChatSession(
            llm,
            system_prompt=settings.system_prompt,
            history_turns=settings.history_turns,
        )

    return create_session
