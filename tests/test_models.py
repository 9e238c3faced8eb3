"""Tests for concord/models.py dataclasses."""

from concord.models import CallResult, Deliberation, ModelSelection, Phase, Preferences, Response, Round, Status


def test_model_selection_default_model():
    s = ModelSelection("openai")
    assert s.provider == "openai"
    assert s.model is None


def test_response_defaults():
    r = Response()
    assert r.text == ""
    assert r.status is None
    assert r.loading is False
    assert r.error is None


def test_round_default_responses():
    rnd = Round(number=1)
    assert rnd.responses == {}


def test_rounds_do_not_share_response_maps():
    a, b = Round(1), Round(2)
    a.responses["openai"] = Response("x")
    assert b.responses == {}


def test_deliberation_defaults():
    d = Deliberation()
    assert d.phase is Phase.SETUP
    assert d.current_round == 1
    assert d.rounds == []
    assert d.synthesis_model == ModelSelection("anthropic")
    assert d.synthesis.prompt == ""


def test_preferences_defaults():
    p = Preferences()
    assert p.enabled_models == ["anthropic", "openai", "google"]
    assert p.use_router is False
    assert p.automated is True


def test_enums_are_strings():
    assert Phase("synthesis") is Phase.SYNTHESIS
    assert Status.IMPASSE.value == "impasse"


def test_call_result_failure():
    r = CallResult(success=False, error="boom")
    assert r.text == ""
    assert r.error == "boom"
