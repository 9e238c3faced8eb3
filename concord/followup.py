"""Follow-up questions about a completed deliberation."""

import logging
from collections.abc import Mapping

import httpx

from config.config_loader import InvocationConfig, PromptsConfig
from concord.invoke import invoke
from concord.models import ChatMessage, Deliberation, ModelSelection
from concord.prompts import build_followup_chat_prompt

logger = logging.getLogger(__name__)


class FollowUpChat:
    """Conversation seeded with a deliberation's query and synthesized answer."""

    def __init__(
        self,
        query: str,
        synthesis: str,
        *,
        prompts: PromptsConfig | None = None,
        invocation: InvocationConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.query = query
        self.synthesis = synthesis
        self.messages: list[ChatMessage] = []
        self._prompts = prompts or PromptsConfig()
        self._invocation = invocation
        self._client = client

    @classmethod
    def from_deliberation(cls, deliberation: Deliberation, **kwargs) -> "FollowUpChat":
        return cls(deliberation.query, deliberation.synthesis.response, **kwargs)

    async def ask(
        self,
        question: str,
        selection: ModelSelection,
        credentials: Mapping[str, str],
        use_router: bool = False,
    ) -> str:
        """Send a follow-up question and return the answer.

        On failure the pending user message is dropped and the error re-raised.
        """
        question = question.strip()
        if not question:
            raise ValueError("Follow-up question is empty")

        prompt = build_followup_chat_prompt(
            self.query, self.synthesis, self.messages, question, template=self._prompts.followup_chat,
        )
        self.messages.append(ChatMessage(role="user", content=question))
        try:
            answer = await invoke(
                selection, prompt, credentials, use_router,
                client=self._client, settings=self._invocation,
            )
        except Exception:
            self.messages.pop()
            raise

        self.messages.append(ChatMessage(role="assistant", content=answer, provider=selection.provider))
        logger.debug("Follow-up answered by %s (%d messages)", selection.provider, len(self.messages))
        return answer
