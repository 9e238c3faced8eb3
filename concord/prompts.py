"""Prompt builders for each deliberation stage and the STATUS line parser.

Templates are plain ``str.format`` strings so that ``settings.yaml`` can
override any of them (see ``config.config_loader.PromptsConfig``).
"""

import re
from collections.abc import Iterable, Mapping

from concord.models import ChatMessage, Status
from concord.providers.registry import PROVIDERS, display_name

FIRST_ROUND_TEMPLATE = """{query}

Please provide your answer. At the end, on its own line, indicate if you'd want to see how other AI models answered this question to refine your response:
STATUS: CONTINUE (yes, show me other perspectives) or SATISFIED (my answer is complete)"""

FOLLOWUP_TEMPLATE = """Original query: {query}

Your previous response:
{own_response}

Other models' responses:

{others}

---

Review the other perspectives (this is round {round}). Then provide:
1. Your updated answer (or confirm yours is unchanged)
2. What points from others you found valuable or incorporated
3. Where you still disagree and why
4. Optionally: a direct question for a specific model (use {mentions})

End with your status on its own line:
STATUS: SATISFIED (ready to conclude) | CONTINUE (want another round) | IMPASSE (fundamental disagreement, won't resolve)"""

SYNTHESIS_TEMPLATE = """{model_count} AI models have deliberated on this query:

Query: {query}

Final positions after {round_count} {rounds_word}:

{responses}

Please synthesize these into:
1. **Consensus**: What all models agree on
2. **Disagreements**: Where they differ, with each model's reasoning
3. **Evolution**: How the discussion progressed (1-2 sentences)
4. **Recommended answer**: Your synthesized best answer incorporating the strongest points from each"""

FOLLOWUP_CHAT_TEMPLATE = """You are continuing a conversation. The user originally asked the following question, and a comprehensive answer was synthesized from multiple AI models deliberating together.

**Original Question:**
{query}

**Synthesized Answer:**
{synthesis}

Now the user has a follow-up question. Please respond helpfully, building on the context above."""

_STATUS_RE = re.compile(r"STATUS:[*_\s]*(CONTINUE|SATISFIED|IMPASSE)\b", re.IGNORECASE)


def build_first_round_prompt(query: str, template: str = FIRST_ROUND_TEMPLATE) -> str:
    """Round 1 prompt, identical for every model."""
    return template.format(query=query)


def _mention_hint(names: list[str]) -> str:
    tags = [f"@{n}" for n in names]
    if not tags:
        return "@Name"
    if len(tags) == 1:
        return tags[0]
    return ", ".join(tags[:-1]) + f", or {tags[-1]}"


def build_followup_prompt(
    query: str,
    model_id: str,
    own_prior_text: str,
    others_prior_text: Mapping[str, str],
    round_number: int,
    template: str = FOLLOWUP_TEMPLATE,
) -> str:
    """Round N prompt: the model's own answer plus every other model's answer."""
    others = [(pid, text) for pid, text in others_prior_text.items() if pid != model_id]
    others_block = "\n\n".join(f"[{display_name(pid)}] said:\n{text}" for pid, text in others)
    return template.format(
        query=query,
        own_response=own_prior_text,
        others=others_block,
        round=round_number,
        mentions=_mention_hint([display_name(pid) for pid, _ in others]),
    )


def build_synthesis_prompt(
    query: str,
    final_responses_by_model: Mapping[str, str],
    round_count: int,
    template: str = SYNTHESIS_TEMPLATE,
) -> str:
    """Prompt for the synthesis model, listing every model's final position."""
    responses = "\n\n".join(
        f"{display_name(pid)}'s final answer:\n{text}"
        for pid, text in final_responses_by_model.items()
    )
    return template.format(
        model_count=len(final_responses_by_model),
        query=query,
        round_count=round_count,
        rounds_word="round" if round_count == 1 else "rounds",
        responses=responses,
    )


def build_followup_chat_prompt(
    query: str,
    synthesis: str,
    messages: list[ChatMessage],
    question: str,
    template: str = FOLLOWUP_CHAT_TEMPLATE,
) -> str:
    """Prompt for a follow-up question asked after the deliberation completed."""
    context = template.format(query=query, synthesis=synthesis)
    if not messages:
        return f"{context}\n\n**Follow-up Question:**\n{question}"
    history = "\n\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages
    )
    return f"{context}\n\n**Conversation so far:**\n{history}\n\nUser: {question}\n\nAssistant:"


def _mention_names(participants: Iterable[str] | None, author: str | None) -> list[str]:
    ids = list(participants) if participants is not None else list(PROVIDERS)
    names: list[str] = []
    for pid in ids:
        if pid == author:
            continue
        info = PROVIDERS.get(pid)
        if info is None:
            names.append(pid)
        else:
            names.append(info.short_name)
    return names


def parse_status(
    text: str | None,
    participants: Iterable[str] | None = None,
    author: str | None = None,
) -> Status | None:
    """Derive a model's status from its answer text.

    A directed remark (``@Name`` of another participant) always means
    CONTINUE, even if the text also says SATISFIED. Otherwise the first
    ``STATUS:`` token wins. No token means the model has not answered yet.

    Args:
        text: The model's answer.
        participants: Provider ids whose names count as mentions
            (defaults to the whole catalog).
        author: Provider id of the model that wrote the text; its own name
            is not a mention.
    """
    if not text:
        return None

    names = _mention_names(participants, author)
    if names:
        alternatives = "|".join(re.escape(n) for n in sorted(names, key=len, reverse=True))
        if re.search(rf"(?<!\w)@(?:{alternatives})\b", text, re.IGNORECASE):
            return Status.CONTINUE

    match = _STATUS_RE.search(text)
    if match:
        return Status(match.group(1).lower())
    return None
