import json

import pytest
from conftest import ScriptedCompletion, SlowResponse, make_chain

from cohort_dashboard.services.ai.model_chain import (
    AIConfigurationError,
    AIExhaustedError,
    MalformedResponseError,
    ModelFallbackChain,
    clean_json_response,
    parse_json_object,
)


@pytest.mark.asyncio
async def test_primary_timeout_falls_back_to_secondary():
    chain = make_chain(
        {
            "primary-model": SlowResponse(5),
            "secondary-model": json.dumps({"status": "ok"}),
        },
        timeout_seconds=0.05,
    )

    result = await chain.run("system", "prompt")

    assert result.model == "secondary-model"
    assert result.models_tried == ["primary-model", "secondary-model"]
    assert result.parsed == {"status": "ok"}
    assert result.attempts[0].error.startswith("TimeoutError")
    assert result.attempts[1].ok


@pytest.mark.asyncio
async def test_malformed_response_moves_to_next_model():
    chain = make_chain({"model-a": "not json at all", "model-b": '```json\n{"x": 1}\n```'})

    result = await chain.run("system", "prompt")

    assert result.model == "model-b"
    assert result.parsed == {"x": 1}
    assert "MalformedResponseError" in result.attempts[0].error


@pytest.mark.asyncio
async def test_first_success_stops_the_chain():
    completion = ScriptedCompletion({"model-a": '{"ok": true}', "model-b": '{"ok": false}'})
    chain = ModelFallbackChain(["model-a", "model-b"], completion_fn=completion)

    result = await chain.run("system", "prompt")

    assert result.models_tried == ["model-a"]
    assert [model for model, _ in completion.calls] == ["model-a"]


@pytest.mark.asyncio
async def test_exhaustion_raises_with_attempts():
    chain = make_chain(
        {"model-a": RuntimeError("rate limited"), "model-b": RuntimeError("server error")}
    )

    with pytest.raises(AIExhaustedError) as exc:
        await chain.run("system", "prompt")

    assert exc.value.models_tried == ["model-a", "model-b"]
    assert exc.value.recoverable is True
    assert "server error" in str(exc.value)


@pytest.mark.asyncio
async def test_configuration_error_stops_immediately():
    completion = ScriptedCompletion(
        {"model-a": AIConfigurationError("OPENAI_API_KEY not configured"), "model-b": "{}"}
    )
    chain = ModelFallbackChain(["model-a", "model-b"], completion_fn=completion)

    with pytest.raises(AIExhaustedError) as exc:
        await chain.run("system", "prompt")

    assert exc.value.models_tried == ["model-a"]
    assert len(completion.calls) == 1


def test_clean_json_response_strips_fences():
    assert clean_json_response('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_json_response('```\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_json_response(' {"a": 1} ') == '{"a": 1}'


def test_parse_json_object_rejects_non_objects():
    with pytest.raises(MalformedResponseError):
        parse_json_object("[1, 2]")
    with pytest.raises(MalformedResponseError):
        parse_json_object("")
