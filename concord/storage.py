"""Persistence port for sessions, history, credentials and preferences.

The orchestrator only talks to a ``SessionStore``. ``JsonFileStore`` keeps one
JSON file per concern in a directory; ``MemoryStore`` is the in-process fake.
Every load tolerates missing or corrupt data and falls back to empty defaults.
"""

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from concord.models import (
    Deliberation,
    ModelSelection,
    Phase,
    Preferences,
    Response,
    Round,
    Status,
    Synthesis,
)

logger = logging.getLogger(__name__)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


def _selection_from(raw: Any) -> ModelSelection:
    if isinstance(raw, str):
        return ModelSelection(raw)
    return ModelSelection(provider=str(raw["provider"]), model=raw.get("model"))


def deliberation_to_dict(d: Deliberation) -> dict[str, Any]:
    """Serialize a Deliberation to JSON-compatible primitives."""
    return {
        "id": d.id,
        "query": d.query,
        "enabled_models": list(d.enabled_models),
        "model_configs": dict(d.model_configs),
        "synthesis_model": {"provider": d.synthesis_model.provider, "model": d.synthesis_model.model},
        "current_round": d.current_round,
        "rounds": [
            {
                "number": rnd.number,
                "responses": {
                    pid: {
                        "text": resp.text,
                        "status": resp.status.value if resp.status else None,
                        "error": resp.error,
                    }
                    for pid, resp in rnd.responses.items()
                },
            }
            for rnd in d.rounds
        ],
        "phase": d.phase.value,
        "synthesis": {
            "prompt": d.synthesis.prompt,
            "response": d.synthesis.response,
            "error": d.synthesis.error,
        },
        "created_at": _ts(d.created_at),
        "completed_at": _ts(d.completed_at),
    }


def _check_structure(d: Deliberation) -> None:
    """Raise ValueError when rounds disagree with the panel or the round counter."""
    if d.phase is Phase.SETUP:
        return
    if not d.enabled_models:
        raise ValueError("no enabled models")
    if d.current_round < 1 or len(d.rounds) != d.current_round:
        raise ValueError(f"current_round {d.current_round} does not match {len(d.rounds)} stored round(s)")
    panel = set(d.enabled_models)
    for rnd in d.rounds:
        if set(rnd.responses) != panel:
            raise ValueError(f"round {rnd.number} responses do not match enabled models")


def deliberation_from_dict(raw: dict[str, Any]) -> Deliberation:
    """Rebuild a Deliberation. Raises KeyError/TypeError/ValueError on malformed input.

    Transient loading flags are never restored.
    """
    rounds = [
        Round(
            number=int(r["number"]),
            responses={
                pid: Response(
                    text=str(resp.get("text") or ""),
                    status=Status(resp["status"]) if resp.get("status") else None,
                    error=resp.get("error"),
                )
                for pid, resp in r["responses"].items()
            },
        )
        for r in raw.get("rounds", [])
    ]
    synth_raw = raw.get("synthesis") or {}
    deliberation = Deliberation(
        id=raw.get("id"),
        query=str(raw.get("query", "")),
        enabled_models=[str(m) for m in raw["enabled_models"]],
        model_configs=dict(raw.get("model_configs") or {}),
        synthesis_model=_selection_from(raw.get("synthesis_model") or "anthropic"),
        current_round=int(raw.get("current_round", 1)),
        rounds=rounds,
        phase=Phase(raw["phase"]),
        synthesis=Synthesis(
            prompt=str(synth_raw.get("prompt") or ""),
            response=str(synth_raw.get("response") or ""),
            error=synth_raw.get("error"),
        ),
        created_at=_parse_ts(raw.get("created_at")),
        completed_at=_parse_ts(raw.get("completed_at")),
    )
    _check_structure(deliberation)
    return deliberation


def preferences_to_dict(p: Preferences) -> dict[str, Any]:
    return {
        "enabled_models": list(p.enabled_models),
        "model_configs": dict(p.model_configs),
        "synthesis_model": {"provider": p.synthesis_model.provider, "model": p.synthesis_model.model},
        "use_router": p.use_router,
        "automated": p.automated,
    }


def preferences_from_dict(raw: dict[str, Any]) -> Preferences:
    base = Preferences()
    return Preferences(
        enabled_models=[str(m) for m in raw.get("enabled_models", base.enabled_models)],
        model_configs=dict(raw.get("model_configs") or {}),
        synthesis_model=_selection_from(raw["synthesis_model"]) if raw.get("synthesis_model") else base.synthesis_model,
        use_router=bool(raw.get("use_router", base.use_router)),
        automated=bool(raw.get("automated", base.automated)),
    )


class SessionStore(ABC):
    """Durable local storage used by the deliberation orchestrator."""

    @abstractmethod
    def load_current_session(self) -> Deliberation | None: ...

    @abstractmethod
    def save_current_session(self, deliberation: Deliberation) -> None: ...

    @abstractmethod
    def clear_current_session(self) -> None: ...

    @abstractmethod
    def load_history(self) -> list[Deliberation]: ...

    @abstractmethod
    def save_history(self, history: list[Deliberation]) -> None: ...

    @abstractmethod
    def load_credentials(self) -> dict[str, str]: ...

    @abstractmethod
    def save_credentials(self, credentials: dict[str, str]) -> None: ...

    @abstractmethod
    def load_preferences(self) -> Preferences | None:
        """Return stored preferences, or None when nothing usable is stored."""
        ...

    @abstractmethod
    def save_preferences(self, preferences: Preferences) -> None: ...


class MemoryStore(SessionStore):
    """In-memory store. Hands out copies so callers never share state with it."""

    def __init__(self) -> None:
        self.current: Deliberation | None = None
        self.history: list[Deliberation] = []
        self.credentials: dict[str, str] = {}
        self.preferences: Preferences | None = None

    def load_current_session(self) -> Deliberation | None:
        return copy.deepcopy(self.current)

    def save_current_session(self, deliberation: Deliberation) -> None:
        self.current = copy.deepcopy(deliberation)

    def clear_current_session(self) -> None:
        self.current = None

    def load_history(self) -> list[Deliberation]:
        return copy.deepcopy(self.history)

    def save_history(self, history: list[Deliberation]) -> None:
        self.history = copy.deepcopy(history)

    def load_credentials(self) -> dict[str, str]:
        return dict(self.credentials)

    def save_credentials(self, credentials: dict[str, str]) -> None:
        self.credentials = dict(credentials)

    def load_preferences(self) -> Preferences | None:
        return copy.deepcopy(self.preferences)

    def save_preferences(self, preferences: Preferences) -> None:
        self.preferences = copy.deepcopy(preferences)


class JsonFileStore(SessionStore):
    """One JSON file per concern inside ``directory``."""

    CURRENT = "current.json"
    HISTORY = "history.json"
    CREDENTIALS = "credentials.json"
    PREFERENCES = "preferences.json"

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).expanduser()

    def _read(self, name: str) -> Any:
        path = self.directory / name
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable %s: %s", path, exc)
            return None

    def _write(self, name: str, data: Any, *, private: bool = False) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / name
        tmp = path.with_suffix(".tmp")
        mode = 0o600 if private else 0o666
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        if private:
            # mode only applies when O_CREAT creates the file
            os.chmod(tmp, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)

    def load_current_session(self) -> Deliberation | None:
        raw = self._read(self.CURRENT)
        if raw is None:
            return None
        try:
            return deliberation_from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Discarding corrupt current session: %s", exc)
            return None

    def save_current_session(self, deliberation: Deliberation) -> None:
        self._write(self.CURRENT, deliberation_to_dict(deliberation))

    def clear_current_session(self) -> None:
        path = self.directory / self.CURRENT
        if path.exists():
            path.unlink()

    def load_history(self) -> list[Deliberation]:
        raw = self._read(self.HISTORY)
        if not isinstance(raw, list):
            return []
        history: list[Deliberation] = []
        for entry in raw:
            try:
                history.append(deliberation_from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping corrupt history entry: %s", exc)
        return history

    def save_history(self, history: list[Deliberation]) -> None:
        self._write(self.HISTORY, [deliberation_to_dict(d) for d in history])

    def load_credentials(self) -> dict[str, str]:
        raw = self._read(self.CREDENTIALS)
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items() if v}

    def save_credentials(self, credentials: dict[str, str]) -> None:
        self._write(self.CREDENTIALS, dict(credentials), private=True)

    def load_preferences(self) -> Preferences | None:
        raw = self._read(self.PREFERENCES)
        if not isinstance(raw, dict):
            return None
        try:
            return preferences_from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring corrupt preferences: %s", exc)
            return None

    def save_preferences(self, preferences: Preferences) -> None:
        self._write(self.PREFERENCES, preferences_to_dict(preferences))
