"""Pure dataclasses for the Concord deliberation pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Phase(str, Enum):
    SETUP = "setup"
    DELIBERATION = "deliberation"
    SYNTHESIS = "synthesis"
    COMPLETE = "complete"


class Status(str, Enum):
    CONTINUE = "continue"
    SATISFIED = "satisfied"
    IMPASSE = "impasse"


class CallState(str, Enum):
    LOADING = "loading"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ModelSelection:
    provider: str             # "openai", "anthropic", "google", ...
    model: str | None = None  # override; None means the provider default


@dataclass
class CallResult:
    success: bool
    text: str = ""
    error: str | None = None


@dataclass
class Response:
    text: str = ""
    status: Status | None = None  # derived from text, see prompts.parse_status
    loading: bool = False
    error: str | None = None


@dataclass
class Round:
    number: int
    responses: dict[str, Response] = field(default_factory=dict)


@dataclass
class Synthesis:
    prompt: str = ""
    response: str = ""
    loading: bool = False
    error: str | None = None


@dataclass
class Deliberation:
    id: str | None = None
    query: str = ""
    enabled_models: list[str] = field(default_factory=list)
    model_configs: dict[str, str | None] = field(default_factory=dict)
    synthesis_model: ModelSelection = field(default_factory=lambda: ModelSelection("anthropic"))
    current_round: int = 1
    rounds: list[Round] = field(default_factory=list)
    phase: Phase = Phase.SETUP
    synthesis: Synthesis = field(default_factory=Synthesis)
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class Preferences:
    enabled_models: list[str] = field(default_factory=lambda: ["anthropic", "openai", "google"])
    model_configs: dict[str, str | None] = field(default_factory=dict)
    synthesis_model: ModelSelection = field(default_factory=lambda: ModelSelection("anthropic"))
    use_router: bool = False
    automated: bool = True


@dataclass
class ChatMessage:
    role: str                  # "user" or "assistant"
    content: str
    provider: str | None = None
