"""
LangChain LLM
=============

LLM provider backed by a LangChain chat model (OpenAI by default).
"""

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from trusted_sql.errors import GenerationError
from trusted_sql.llm.base import LLMInterface
from trusted_sql.models import LLMResponse, PromptContext


class LangChainLLM(LLMInterface):
    """Generates SQL through any LangChain chat model."""

    def __init__(
        self,
        chat_model: BaseChatModel | None = None,
        model_name: str = "gpt-4o-mini",
        temperature_step: float = 0.3,
    ) -> None:
        """
        Args:
            chat_model: Preconfigured chat model; builds ChatOpenAI when omitted
            model_name: OpenAI model used when building the default client
            temperature_step: Extra temperature per generation index so
                              consensus candidates are sampled independently
        """
        self.chat_model = chat_model or ChatOpenAI(model=model_name, temperature=0)
        self.model_name = model_name
        self.temperature_step = temperature_step

    async def generate(self, context: PromptContext) -> LLMResponse:
        messages = [
            SystemMessage(content=context.system_prompt),
            HumanMessage(content=context.prompt),
        ]
        temperature = context.temperature + self.temperature_step * context.generation_index
        model = self.chat_model
        if temperature and isinstance(model, ChatOpenAI):
            model = model.bind(temperature=min(temperature, 1.0))

        try:
            message = await model.ainvoke(messages)
        except Exception as e:
            raise GenerationError(f"LLM call failed: {e}") from e

        content = message.content if isinstance(message.content, str) else str(message.content)
        if not content.strip():
            raise GenerationError("LLM returned an empty response")

        usage = getattr(message, "usage_metadata", None) or {}
        return LLMResponse(
            content=content,
            model=self.model_name,
            tokens_used=int(usage.get("total_tokens", 0)),
        )
