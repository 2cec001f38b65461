# tests/core/test_token_budget.py
import pytest

from contextchat.core.errors import NetworkError, TokenizerFailure
from contextchat.core.models import ROLE_ASSISTANT, ROLE_USER, Message, ProcessedFile
from contextchat.core.token_budget import (DEFAULT_PROFILE, MODEL_CATALOGUE, TokenBudgetEngine,
                                           build_conversation_text, limit_for)


def _file(name, tokens):
    return ProcessedFile(id=name, path=name, name=name, raw_content="", content_type="text", size=0,
                         kind="text", token_count=tokens)


MESSAGES = [Message(1, ROLE_USER, "hello there"), Message(2, ROLE_ASSISTANT, "general kenobi")]


def test_limit_for_known_and_unknown_models():
    assert limit_for("gemini-1.5-pro").context_token_limit == 2097152
    assert limit_for("gemini-2.5-pro-exp-03-25").max_output_tokens == 65536
    unknown = limit_for("some-future-model")
    assert unknown == DEFAULT_PROFILE
    assert (unknown.context_token_limit, unknown.max_output_tokens) == (32768, 8192)


def test_catalogue_models_all_have_profiles():
    for info in MODEL_CATALOGUE:
        assert limit_for(info.code) != DEFAULT_PROFILE


def test_build_conversation_text():
    text = build_conversation_text(MESSAGES, "  Be brief.  ")
    assert text == "System: Be brief.\n\nUser: hello there\nAssistant: general kenobi"
    assert build_conversation_text(MESSAGES, "   ") == "User: hello there\nAssistant: general kenobi"
    assert build_conversation_text([], "") == ""


def test_placeholder_updates_limit_synchronously():
    engine = TokenBudgetEngine()
    budget = engine.placeholder("gemini-1.0-pro", [_file("a", 10), _file("b", 5)])
    assert budget.limit == 32768
    assert budget.file_pool_tokens == 15
    assert budget.conversation_tokens == 0


@pytest.mark.asyncio
async def test_recompute_is_idempotent(fake_tokenizer):
    engine = TokenBudgetEngine(fake_tokenizer)
    pool = [_file("a", 100)]
    first = await engine.recompute(MESSAGES, "Be brief.", pool, "gemini-2.0-flash")
    second = await engine.recompute(MESSAGES, "Be brief.", pool, "gemini-2.0-flash")
    assert first == second
    assert first.conversation_tokens > 0
    assert first.combined_tokens == first.conversation_tokens + 100
    assert len(fake_tokenizer.calls) == 2


@pytest.mark.asyncio
async def test_recompute_does_not_recount_files(fake_tokenizer):
    engine = TokenBudgetEngine(fake_tokenizer)
    await engine.recompute(MESSAGES, "", [_file("a", 7), _file("b", 8)], "gemini-2.0-flash")
    assert len(fake_tokenizer.calls) == 1
    assert fake_tokenizer.calls[0][0].startswith("User: hello there")


@pytest.mark.asyncio
async def test_empty_conversation_makes_no_call(fake_tokenizer):
    budget = await TokenBudgetEngine(fake_tokenizer).recompute([], "", [_file("a", 3)], "gemini-2.0-flash")
    assert budget.conversation_tokens == 0 and budget.file_pool_tokens == 3
    assert fake_tokenizer.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [TokenizerFailure("quota", 500), NetworkError("offline")])
async def test_tokenizer_failure_reports_zero_with_limit(make_tokenizer, error):
    engine = TokenBudgetEngine(make_tokenizer(error=error))
    budget = await engine.recompute(MESSAGES, "", [_file("a", 4)], "gemini-1.5-pro")
    assert budget.conversation_tokens == 0
    assert budget.file_pool_tokens == 4
    assert budget.limit == 2097152
    assert budget.error == error.user_message


@pytest.mark.asyncio
async def test_recompute_without_tokenizer_reports_error():
    budget = await TokenBudgetEngine().recompute(MESSAGES, "", [], "gemini-2.0-flash")
    assert budget.conversation_tokens == 0
    assert budget.error


def test_over_limit_flag():
    engine = TokenBudgetEngine()
    assert engine.placeholder("gemini-1.0-pro", [_file("big", 40000)]).over_limit
    assert not engine.placeholder("gemini-1.0-pro", [_file("small", 10)]).over_limit


def test_epochs_only_latest_is_current():
    engine = TokenBudgetEngine()
    first = engine.next_epoch()
    second = engine.next_epoch()
    assert second > first
    assert engine.is_current(second) and not engine.is_current(first)
