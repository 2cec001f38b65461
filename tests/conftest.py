# tests/conftest.py
import pytest

from contextchat.config.loader import reset_config_cache


@pytest.fixture(autouse=True)
def isolated_user_dir(tmp_path_factory, monkeypatch):
    """Keeps config, credentials and logs out of the real user directory."""
    home = tmp_path_factory.mktemp("contextchat_home")
    monkeypatch.setenv("CONTEXTCHAT_HOME", str(home))
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("CONTEXTCHAT_MODEL", raising=False)
    reset_config_cache()
    yield home
    reset_config_cache()


class FakeTokenizer:
    """Counts whitespace-separated words; records every call."""

    def __init__(self, fail_for=(), error=None):
        self.calls = []
        self.fail_for = set(fail_for)
        self.error = error

    async def count_tokens(self, text: str, model_id: str) -> int:
        self.calls.append((text, model_id))
        if self.error is not None and (not self.fail_for or any(marker in text for marker in self.fail_for)):
            raise self.error
        return len(text.split())


@pytest.fixture
def fake_tokenizer():
    return FakeTokenizer()


@pytest.fixture
def make_tokenizer():
    return FakeTokenizer
