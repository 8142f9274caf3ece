import pytest

from errors import ConfigurationError, GenerationFailed, InvalidInput
from prompt_improver import KIDS_SAFETY_NOTE, PromptImprover, build_messages, clean_prompt

pytestmark = pytest.mark.anyio


def test_clean_prompt_trims_and_caps_length():
    assert clean_prompt("  a calm lake  ") == "a calm lake"
    assert len(clean_prompt("x" * 900)) == 500
    with pytest.raises(InvalidInput, match="too short"):
        clean_prompt(" hi ")
    with pytest.raises(InvalidInput):
        clean_prompt(None)


def test_kids_preset_always_carries_the_safety_note():
    kids = build_messages("a dragon story", "kids-story")
    assert KIDS_SAFETY_NOTE in kids[0]["content"]
    assert kids[1] == {"role": "user", "content": "a dragon story"}

    asmr = build_messages("a dragon story", "classic-asmr")
    assert KIDS_SAFETY_NOTE not in asmr[0]["content"]
    assert "'classic-asmr' preset" in asmr[0]["content"]


async def test_improve_sends_one_chat_request(chat_model, prompt_improver):
    chat_model.reply = "  A slow, gentle walk along a moonlit lake.  "

    improved = await prompt_improver.improve("walk by a lake", "meditation")

    assert improved == "A slow, gentle walk along a moonlit lake."
    assert len(chat_model.requests) == 1
    request = chat_model.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["max_tokens"] == 200
    assert request["messages"][-1]["content"] == "walk by a lake"
    assert "'meditation' preset" in request["messages"][0]["content"]


async def test_missing_preset_defaults_to_classic_asmr(chat_model, prompt_improver):
    await prompt_improver.improve("rain on leaves")
    assert "'classic-asmr' preset" in chat_model.requests[0]["messages"][0]["content"]


async def test_invalid_input_never_reaches_the_model(chat_model, prompt_improver):
    with pytest.raises(InvalidInput):
        await prompt_improver.improve("ok", "sleep-story")
    with pytest.raises(InvalidInput, match="Unknown preset"):
        await prompt_improver.improve("rain on leaves", "heavy-metal")
    assert chat_model.requests == []


async def test_model_errors_and_empty_replies_are_generation_failures(chat_model, prompt_improver):
    chat_model.status_code = 503
    with pytest.raises(GenerationFailed):
        await prompt_improver.improve("rain on leaves")

    chat_model.status_code = 200
    chat_model.reply = "   "
    with pytest.raises(GenerationFailed, match="Could not improve prompt"):
        await prompt_improver.improve("rain on leaves")


async def test_unconfigured_api_key_is_a_configuration_error():
    improver = PromptImprover(api_key="")
    with pytest.raises(ConfigurationError) as exc:
        await improver.improve("rain on leaves")
    assert exc.value.code == "CONFIGURATION_ERROR"
    assert exc.value.status_code == 500
