# tests/test_cli.py
import pytest
from typer.testing import CliRunner

from contextchat import __version__, cli
from contextchat.config.credentials import CredentialStore
from contextchat.core.errors import MissingCredential

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    # CliRunner swaps the std streams; keep loguru sinks out of it
    return mocker.patch.object(cli, "setup_logging")


def test_version():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert f"ContextChat CLI Version: {__version__}" in result.output


def test_models_lists_catalogue():
    result = runner.invoke(cli.app, ["models"])
    assert result.exit_code == 0
    assert "gemini-2.0-flash" in result.output
    assert "context=1,048,576" in result.output


def test_verbose_flag_sets_debug(quiet_logging):
    runner.invoke(cli.app, ["-v", "models"])
    quiet_logging.assert_called_once_with(level="DEBUG", verbose=True)


def test_ls_lists_directories_first(tmp_path):
    (tmp_path / "b.txt").write_text("b")
    (tmp_path / "zdir").mkdir()
    result = runner.invoke(cli.app, ["ls", str(tmp_path)])
    assert result.exit_code == 0
    lines = [line for line in result.output.splitlines() if line.strip()]
    assert lines[:2] == ["d  zdir", "-  b.txt"]


def test_ls_missing_directory_fails(tmp_path):
    result = runner.invoke(cli.app, ["ls", str(tmp_path / "nope")])
    assert result.exit_code == 1


def test_ingest_without_key_keeps_files(tmp_path):
    (tmp_path / "a.txt").write_text("alpha")
    (tmp_path / "b.txt").write_text("beta")
    result = runner.invoke(cli.app, ["ingest", str(tmp_path)])
    assert result.exit_code == 0
    assert "2 file(s), 0 tokens in file pool." in result.output


def test_set_key_stores_credential():
    result = runner.invoke(cli.app, ["set-key", "--key", "abc123"])
    assert result.exit_code == 0
    assert "API key saved." in result.output
    assert CredentialStore().load_credential() == "abc123"


def test_ask_without_key_reports_error():
    result = runner.invoke(cli.app, ["ask", "hello"])
    assert result.exit_code == 1
    assert MissingCredential().user_message in result.output


def test_budget_without_inputs():
    result = runner.invoke(cli.app, ["budget", "--model", "gemini-1.0-pro"])
    assert result.exit_code == 0
    assert "Combined:     0 / 32,768" in result.output
