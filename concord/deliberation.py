"""Deliberation orchestration: round lifecycle, convergence, synthesis, history."""

import asyncio
import copy
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

import httpx

from config.config_loader import DefaultsConfig, InvocationConfig, PromptsConfig
from concord.invoke import invoke, invoke_many
from concord.models import (
    CallResult,
    CallState,
    Deliberation,
    ModelSelection,
    Phase,
    Preferences,
    Response,
    Round,
    Status,
    Synthesis,
)
from concord.prompts import (
    build_first_round_prompt,
    build_followup_prompt,
    build_synthesis_prompt,
    parse_status,
)
from concord.providers.base import ConcordError, MissingCredential, ProviderError, UnknownProvider
from concord.providers.registry import MAX_PARTICIPANTS, PROVIDERS, get_provider
from concord.storage import SessionStore

logger = logging.getLogger(__name__)


class InvalidTransition(ConcordError):
    """Raised when an action is not allowed in the current phase."""


class SessionNotFound(ConcordError):
    """Raised when a history id does not exist."""

    def __init__(self, deliberation_id: str) -> None:
        self.deliberation_id = deliberation_id
        super().__init__(f"No deliberation with id {deliberation_id}")


def all_responses_filled(responses: Mapping[str, Response], enabled_models: list[str]) -> bool:
    """True when every enabled model has non-blank text."""
    return all(
        model_id in responses and responses[model_id].text.strip()
        for model_id in enabled_models
    )


def should_proceed_to_synthesis(responses: Mapping[str, Response]) -> bool:
    """Convergence: every response has a status and none asks to continue."""
    statuses = [r.status for r in responses.values()]
    if not statuses or any(s is None for s in statuses):
        return False
    return all(s is not Status.CONTINUE for s in statuses)


def min_rounds(enabled_models: list[str]) -> int:
    """Multi-model panels must see each other's answers at least once."""
    return 2 if len(enabled_models) > 1 else 1


def _check_participant(provider: str) -> None:
    if provider not in PROVIDERS:
        raise UnknownProvider(provider)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeliberationSession:
    """Owns the live Deliberation and every transition applied to it.

    All reads and writes of durable state go through ``store``. Automated
    calls are guarded by an in-flight flag: a second batch requested while one
    is outstanding is refused rather than queued.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        settings: DefaultsConfig | None = None,
        prompts: PromptsConfig | None = None,
        invocation: InvocationConfig | None = None,
        client: httpx.AsyncClient | None = None,
        on_progress: Callable[..., None] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or DefaultsConfig()
        self.prompts = prompts or PromptsConfig()
        self.invocation = invocation or InvocationConfig()
        self.client = client
        self.on_progress = on_progress
        # Cosmetic pauses are skipped when nobody is watching.
        self.foreground = True
        self._in_flight = False
        self._auto_running = False

        self.credentials: dict[str, str] = store.load_credentials()
        self.preferences: Preferences = store.load_preferences() or self._default_preferences()
        self.history: list[Deliberation] = store.load_history()

        restored = store.load_current_session()
        if restored is not None and restored.phase is not Phase.SETUP:
            logger.info("Restored deliberation %s in phase %s", restored.id, restored.phase.value)
            self.state = restored
        else:
            self.state = self._fresh_state()

    # -- helpers -----------------------------------------------------------

    def _default_preferences(self) -> Preferences:
        return Preferences(
            enabled_models=list(self.settings.enabled_models),
            synthesis_model=ModelSelection(self.settings.synthesis_model),
            use_router=self.settings.use_router,
            automated=self.settings.automated,
        )

    def _fresh_state(self) -> Deliberation:
        return Deliberation(
            enabled_models=list(self.preferences.enabled_models),
            model_configs=dict(self.preferences.model_configs),
            synthesis_model=copy.copy(self.preferences.synthesis_model),
        )

    def _require_phase(self, action: str, *phases: Phase) -> None:
        if self.state.phase not in phases:
            raise InvalidTransition(f"Cannot {action} during {self.state.phase.value}")

    def _persist(self) -> None:
        if self.state.phase is not Phase.SETUP:
            self.store.save_current_session(self.state)

    def _save_preferences(self) -> None:
        self.preferences.enabled_models = list(self.state.enabled_models)
        self.preferences.model_configs = dict(self.state.model_configs)
        self.preferences.synthesis_model = copy.copy(self.state.synthesis_model)
        self.store.save_preferences(self.preferences)

    def _empty_round(self, number: int) -> Round:
        return Round(number=number, responses={m: Response() for m in self.state.enabled_models})

    def selection_for(self, provider: str) -> ModelSelection:
        return ModelSelection(provider, self.state.model_configs.get(provider) or None)

    def _track_progress(self, round_obj: Round) -> Callable[..., None]:
        def on_progress(provider: str, call_state: CallState, message: str | None = None) -> None:
            response = round_obj.responses.get(provider)
            if response is not None:
                response.loading = call_state is CallState.LOADING
            if self.on_progress:
                self.on_progress(provider, call_state, message)
        return on_progress

    async def _pause(self) -> None:
        delay = self.settings.transition_pause_sec if self.foreground else 0.0
        if delay > 0:
            await asyncio.sleep(delay)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # -- setup -------------------------------------------------------------

    def set_query(self, query: str) -> None:
        self._require_phase("change the query", Phase.SETUP)
        self.state.query = query

    def toggle_model(self, provider: str) -> list[str]:
        """Add or remove a participant. Never leaves zero or more than MAX_PARTICIPANTS."""
        self._require_phase("change models", Phase.SETUP)
        _check_participant(provider)
        models = self.state.enabled_models
        if provider in models:
            if len(models) > 1:
                models.remove(provider)
        elif len(models) < MAX_PARTICIPANTS:
            models.append(provider)
        else:
            logger.warning("Cannot enable %s: at most %d models", provider, MAX_PARTICIPANTS)
        self._save_preferences()
        return list(models)

    def set_enabled_models(self, providers: list[str]) -> None:
        self._require_phase("change models", Phase.SETUP)
        unique = list(dict.fromkeys(providers))
        for provider in unique:
            _check_participant(provider)
        if not 1 <= len(unique) <= MAX_PARTICIPANTS:
            raise ValueError(f"Between 1 and {MAX_PARTICIPANTS} models must be enabled, got {len(unique)}")
        self.state.enabled_models = unique
        self._save_preferences()

    def set_model_config(self, provider: str, model: str | None) -> None:
        """Override the model id for a provider; None or blank restores the default."""
        self._require_phase("change model overrides", Phase.SETUP)
        _check_participant(provider)
        model = (model or "").strip()
        if model:
            self.state.model_configs[provider] = model
        else:
            self.state.model_configs.pop(provider, None)
        self._save_preferences()

    def set_synthesis_model(self, provider: str, model: str | None = None) -> None:
        self._require_phase("change the synthesis model", Phase.SETUP)
        _check_participant(provider)
        self.state.synthesis_model = ModelSelection(provider, (model or "").strip() or None)
        self._save_preferences()

    def set_use_router(self, use_router: bool) -> None:
        self.preferences.use_router = use_router
        self.store.save_preferences(self.preferences)

    def set_automated(self, automated: bool) -> None:
        self.preferences.automated = automated
        self.store.save_preferences(self.preferences)

    def set_credential(self, provider: str, api_key: str | None) -> None:
        """Store (or with a blank key, remove) the key for a provider or the router."""
        get_provider(provider)
        api_key = (api_key or "").strip()
        if api_key:
            self.credentials[provider] = api_key
        else:
            self.credentials.pop(provider, None)
        self.store.save_credentials(self.credentials)

    def set_credentials(self, credentials: Mapping[str, str]) -> None:
        for provider, api_key in credentials.items():
            self.set_credential(provider, api_key)

    # -- deliberation ------------------------------------------------------

    def start(self) -> bool:
        """Leave setup and open round 1. Returns False if the query or panel is empty."""
        self._require_phase("start", Phase.SETUP)
        if not self.state.query.strip() or not self.state.enabled_models:
            return False

        self.state.id = uuid.uuid4().hex
        self.state.phase = Phase.DELIBERATION
        self.state.current_round = 1
        self.state.rounds = [self._empty_round(1)]
        self.state.synthesis = Synthesis()
        self.state.created_at = _now()
        self.state.completed_at = None

        self._save_preferences()
        self._persist()
        logger.info(
            "Deliberation %s started with %s",
            self.state.id, ", ".join(self.state.enabled_models),
        )
        return True

    @property
    def current_round(self) -> Round:
        return self.state.rounds[self.state.current_round - 1]

    @property
    def current_responses(self) -> dict[str, Response]:
        if not self.state.rounds:
            return {}
        return self.current_round.responses

    def _fill(self, provider: str, text: str) -> None:
        response = self.current_round.responses[provider]
        response.text = text
        response.status = parse_status(text, self.state.enabled_models, author=provider)
        response.error = None

    def update_response(self, provider: str, text: str) -> None:
        """Set a model's answer for the active round; its status is re-derived from text."""
        self._require_phase("edit responses", Phase.DELIBERATION)
        if provider not in self.current_responses:
            raise InvalidTransition(f"{provider} is not participating in this deliberation")
        self._fill(provider, text)
        self._persist()

    def round_filled(self) -> bool:
        return all_responses_filled(self.current_responses, self.state.enabled_models)

    def failed_models(self) -> list[str]:
        return [pid for pid, r in self.current_responses.items() if r.error]

    def _ready_for_synthesis(self) -> bool:
        converged = should_proceed_to_synthesis(self.current_responses)
        current = self.state.current_round
        return (converged and current >= min_rounds(self.state.enabled_models)) or current >= self.settings.max_rounds

    def should_show_synthesis(self) -> bool:
        """Whether the next advance would move to synthesis."""
        if self.state.phase is not Phase.DELIBERATION or not self.round_filled():
            return False
        return self._ready_for_synthesis()

    def next_round(self) -> bool:
        """Advance: either to synthesis or to a fresh round.

        Returns False (and changes nothing) while the round is unfilled or a
        batch of calls is still outstanding.
        """
        self._require_phase("advance", Phase.DELIBERATION)
        if self._in_flight or not self.round_filled():
            return False

        if self._ready_for_synthesis():
            self._enter_synthesis()
        else:
            number = self.state.current_round + 1
            self.state.rounds.append(self._empty_round(number))
            self.state.current_round = number
            logger.info("Deliberation %s: round %d opened", self.state.id, number)

        self._persist()
        return True

    def _enter_synthesis(self) -> None:
        responses = self.current_responses
        final = {
            pid: responses[pid].text
            for pid in self.state.enabled_models
            if pid in responses and responses[pid].text.strip()
        }
        self.state.synthesis = Synthesis(
            prompt=build_synthesis_prompt(
                self.state.query, final, self.state.current_round, template=self.prompts.synthesis,
            ),
        )
        self.state.phase = Phase.SYNTHESIS
        logger.info(
            "Deliberation %s: synthesis after %d round(s)", self.state.id, self.state.current_round,
        )

    def prompt_for_model(self, provider: str) -> str:
        """Prompt for ``provider`` in the active round, built from the previous round's texts."""
        if self.state.current_round == 1:
            return build_first_round_prompt(self.state.query, template=self.prompts.first_round)

        previous = self.state.rounds[self.state.current_round - 2].responses
        own = previous[provider].text if provider in previous else ""
        others = {
            pid: previous[pid].text if pid in previous else ""
            for pid in self.state.enabled_models
            if pid != provider
        }
        return build_followup_prompt(
            self.state.query, provider, own, others, self.state.current_round,
            template=self.prompts.followup,
        )

    async def run_round(self, providers: list[str] | None = None) -> dict[str, CallResult] | None:
        """Call every model still missing an answer (or just ``providers``) in parallel.

        Results are applied only after every call has settled. Returns None if
        another batch is already outstanding.
        """
        self._require_phase("run a round", Phase.DELIBERATION)
        if self._in_flight:
            logger.warning("Round %d already has calls in flight; ignoring", self.state.current_round)
            return None

        round_obj = self.current_round
        if providers is None:
            targets = [pid for pid in self.state.enabled_models if not round_obj.responses[pid].text.strip()]
        else:
            targets = list(dict.fromkeys(providers))
            for pid in targets:
                if pid not in round_obj.responses:
                    raise InvalidTransition(f"{pid} is not participating in this deliberation")
        if not targets:
            return {}

        prompts = {pid: self.prompt_for_model(pid) for pid in targets}
        for pid in targets:
            round_obj.responses[pid].loading = True
            round_obj.responses[pid].error = None

        self._in_flight = True
        logger.info("Round %d: calling %s", round_obj.number, ", ".join(targets))
        try:
            results = await invoke_many(
                [self.selection_for(pid) for pid in targets],
                lambda selection: prompts[selection.provider],
                self.credentials,
                self.preferences.use_router,
                self._track_progress(round_obj),
                client=self.client,
                settings=self.invocation,
            )
        finally:
            self._in_flight = False
            for pid in targets:
                round_obj.responses[pid].loading = False

        for pid, result in results.items():
            if result.success:
                self._fill(pid, result.text)
            else:
                round_obj.responses[pid].error = result.error

        self._persist()
        failed = [pid for pid, r in results.items() if not r.success]
        logger.info(
            "Round %d: %d/%d calls succeeded%s",
            round_obj.number, len(results) - len(failed), len(results),
            f" (failed: {', '.join(failed)})" if failed else "",
        )
        return results

    async def retry_failed(self) -> dict[str, CallResult] | None:
        """Re-run only the models whose last call failed."""
        failed = self.failed_models()
        if not failed:
            return {}
        return await self.run_round(failed)

    # -- synthesis ---------------------------------------------------------

    def synthesis_selection(self) -> ModelSelection:
        chosen = self.state.synthesis_model
        return ModelSelection(chosen.provider, chosen.model or self.state.model_configs.get(chosen.provider) or None)

    def update_synthesis(self, text: str) -> None:
        self._require_phase("edit the synthesis", Phase.SYNTHESIS)
        self.state.synthesis.response = text
        self.state.synthesis.error = None
        self._persist()

    async def run_synthesis(self) -> CallResult | None:
        """Call the synthesis model. A failure keeps the prompt and records the error."""
        self._require_phase("run synthesis", Phase.SYNTHESIS)
        if self._in_flight:
            logger.warning("Synthesis already in flight; ignoring")
            return None

        synthesis = self.state.synthesis
        selection = self.synthesis_selection()
        synthesis.loading = True
        synthesis.error = None
        self._in_flight = True
        logger.info("Running synthesis via %s", selection.provider)
        try:
            text = await invoke(
                selection,
                synthesis.prompt,
                self.credentials,
                self.preferences.use_router,
                client=self.client,
                settings=self.invocation,
            )
        except ProviderError as exc:
            logger.warning("Synthesis via %s failed: %s", selection.provider, exc)
            result = CallResult(success=False, error=exc.message)
        except MissingCredential as exc:
            logger.warning("Synthesis via %s failed: %s", selection.provider, exc)
            result = CallResult(success=False, error=str(exc))
        else:
            result = CallResult(success=True, text=text)
        finally:
            self._in_flight = False
            synthesis.loading = False

        if result.success:
            synthesis.response = result.text
        else:
            synthesis.error = result.error
        self._persist()
        return result

    def complete(self) -> bool:
        """Finish the deliberation and file a copy in history. False if synthesis is empty."""
        self._require_phase("complete", Phase.SYNTHESIS)
        if not self.state.synthesis.response.strip():
            return False

        self.state.phase = Phase.COMPLETE
        self.state.completed_at = _now()
        self.history.insert(0, copy.deepcopy(self.state))
        del self.history[self.settings.history_limit:]
        self.store.save_history(self.history)
        self._persist()
        logger.info("Deliberation %s complete after %d round(s)", self.state.id, self.state.current_round)
        return True

    async def run_automated(self) -> Phase:
        """Drive the deliberation forward until it completes or needs attention.

        Stops early when a round still has failed models (retry is left to the
        caller) or when the synthesis call fails.
        """
        if self._auto_running:
            logger.warning("Automated run already active; ignoring")
            return self.state.phase

        self._auto_running = True
        try:
            while self.state.phase is Phase.DELIBERATION:
                if not self.round_filled():
                    results = await self.run_round()
                    if results is None:
                        break
                    if not self.round_filled():
                        logger.warning(
                            "Round %d incomplete; failed models: %s",
                            self.state.current_round, ", ".join(self.failed_models()) or "none",
                        )
                        break
                await self._pause()
                self.next_round()

            if self.state.phase is Phase.SYNTHESIS:
                if not self.state.synthesis.response.strip():
                    result = await self.run_synthesis()
                    if result is None or not result.success:
                        return self.state.phase
                self.complete()
        finally:
            self._auto_running = False
        return self.state.phase

    # -- session management ------------------------------------------------

    def start_new(self) -> None:
        """Discard the live session; keep the panel, overrides and synthesis choice."""
        if self._in_flight:
            raise InvalidTransition("Cannot discard a deliberation while calls are in flight")
        self._save_preferences()
        self.store.clear_current_session()
        self.state = self._fresh_state()

    def get_history_entry(self, deliberation_id: str) -> Deliberation:
        for entry in self.history:
            if entry.id == deliberation_id:
                return entry
        raise SessionNotFound(deliberation_id)

    def load_from_history(self, deliberation_id: str) -> Deliberation:
        """Make an independent copy of a history entry the live session."""
        if self._in_flight:
            raise InvalidTransition("Cannot load a deliberation while calls are in flight")
        self.state = copy.deepcopy(self.get_history_entry(deliberation_id))
        self._persist()
        return self.state

    def delete_from_history(self, deliberation_id: str) -> bool:
        remaining = [d for d in self.history if d.id != deliberation_id]
        if len(remaining) == len(self.history):
            return False
        self.history = remaining
        self.store.save_history(self.history)
        return True
