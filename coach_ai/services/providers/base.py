from __future__ import annotations
import logging
from typing import Any, List, Protocol, runtime_checkable

from google.genai import types
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from coach_ai.schemas.generation import ProviderCall, ProviderDescriptor

logger = logging.getLogger(__name__)


@runtime_checkable
class Provider(Protocol):
    """Uniform capability interface: every upstream service looks like this."""
    descriptor: ProviderDescriptor

    @property
    def name(self) -> str:
        ...

    async def invoke(self, call: ProviderCall) -> str:
        """Return the raw completion text. SDK errors propagate untouched."""
        ...


def _message_text(content: Any) -> str:
    """LangChain content is a str, or a list of str/blocks for some models."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


class ChatModelProvider:
    """Provider backed by any LangChain chat model (ChatOpenAI, ChatGroq, ...)."""

    def __init__(self, descriptor: ProviderDescriptor, chat_model: BaseChatModel):
        self.descriptor = descriptor
        self.chat_model = chat_model

    @property
    def name(self) -> str:
        return self.descriptor.name

    @staticmethod
    def to_messages(call: ProviderCall) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=call.system_prompt)]
        for message in call.messages:
            if message.role == "assistant":
                messages.append(AIMessage(content=message.content))
            else:
                messages.append(HumanMessage(content=message.content))
        return messages

    async def invoke(self, call: ProviderCall) -> str:
        model = self.chat_model.bind(max_tokens=call.max_tokens, temperature=call.temperature)
        response = await model.ainvoke(self.to_messages(call))
        content = response.content if hasattr(response, 'content') else response
        return _message_text(content)

    def __repr__(self) -> str:
        return f"ChatModelProvider(name={self.name!r})"


class GeminiProvider:
    """Provider backed by the google-genai SDK."""

    def __init__(self, descriptor: ProviderDescriptor, client, model: str):
        self.descriptor = descriptor
        self.client = client
        self.model = model

    @property
    def name(self) -> str:
        return self.descriptor.name

    @staticmethod
    def to_contents(call: ProviderCall) -> List[types.Content]:
        return [
            types.Content(
                role="model" if message.role == "assistant" else "user",
                parts=[types.Part(text=message.content)],
            )
            for message in call.messages
        ]

    async def invoke(self, call: ProviderCall) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=self.to_contents(call),
            config=types.GenerateContentConfig(
                system_instruction=call.system_prompt,
                max_output_tokens=call.max_tokens,
                temperature=call.temperature,
            ),
        )
        return response.text or ""

    def __repr__(self) -> str:
        return f"GeminiProvider(name={self.name!r}, model={self.model!r})"
