# contextchat/cli.py

import asyncio
from typing import List, Optional

import typer
from loguru import logger

from .services.logging import setup_logging
from .config.credentials import CredentialStore
from .config.loader import get_config
from .config.schema import AppConfig, GenerationConfig
# Import the *core* classes, not the Qt adapters
from .core.chat_session import ChatSession
from .core.errors import ContextChatError, MissingCredential
from .core.file_pipeline import FileProcessingPipeline
from .core.fs_walker import DirectoryWalker
from .core.gemini_client import GeminiClient, GeminiClientFactory
from .core.models import ROLE_USER, Message, PipelineResult
from .core.token_budget import MODEL_CATALOGUE, TokenBudgetEngine, limit_for
from . import __version__

app = typer.Typer(help="ContextChat CLI - inspect files, token budgets and ask Gemini headlessly.")

def version_callback(value: bool):
    if value:
        print(f"ContextChat CLI Version: {__version__}")
        raise typer.Exit()

@app.callback()
def main_options(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    version: Optional[bool] = typer.Option(None, "--version", callback=version_callback, is_eager=True, help="Show version and exit."),
):
    """ Main callback to set up logging """
    log_level = "DEBUG" if verbose else "INFO"
    setup_logging(level=log_level, verbose=verbose)
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose


def _make_walker(config: AppConfig) -> DirectoryWalker:
    return DirectoryWalker(accepted_extensions=config.accepted_extensions,
                           max_concurrency=config.walker_concurrency,
                           browse_root=config.browse_root)

def _make_factory(config: AppConfig) -> GeminiClientFactory:
    return GeminiClientFactory(base_url=config.api_base_url, timeout=config.request_timeout_s)

def _tokenizer(factory: GeminiClientFactory, credential: str) -> Optional[GeminiClient]:
    try:
        return factory.get(credential)
    except MissingCredential:
        logger.warning("No API key configured; token counts will be 0. Run 'contextchat set-key' first.")
        return None

def _print_pipeline_result(result: PipelineResult):
    for record in result.files:
        typer.echo(f"{record.token_count:>10,}  {record.kind:<4}  {record.path}")
    for error in result.errors:
        typer.echo(f"ERROR  {error.path}: {error.message}", err=True)
    for warning in result.warnings:
        typer.echo(f"WARNING  {warning}", err=True)
    typer.echo(f"{len(result.files)} file(s), {result.file_pool_tokens:,} tokens in file pool.")


@app.command("ls")
def list_directory(path: str = typer.Argument("", help="Directory to list (defaults to the browse root).")):
    """Lists one directory level, directories first."""
    walker = _make_walker(get_config())
    try:
        entries = asyncio.run(walker.list_children(path))
    except ContextChatError as e:
        logger.error(e.user_message)
        raise typer.Exit(code=1)
    for entry in entries:
        typer.echo(f"{'d' if entry.is_directory else '-'}  {entry.name}")


@app.command()
def ingest(
    paths: List[str] = typer.Argument(..., help="Files and/or directories to ingest recursively."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model used for token counting."),
):
    """Reads, extracts and token-counts the given paths, like selecting them in the app."""
    config = get_config()
    model = model or config.selected_model

    async def _run() -> PipelineResult:
        factory = _make_factory(config)
        try:
            pipeline = FileProcessingPipeline(_make_walker(config), tokenizer_concurrency=config.tokenizer_concurrency)
            return await pipeline.trigger(paths, model, _tokenizer(factory, CredentialStore().load_credential()))
        finally:
            await factory.aclose()

    result = asyncio.run(_run())
    if result.fatal_error:
        logger.error(result.fatal_error)
        raise typer.Exit(code=1)
    _print_pipeline_result(result)


@app.command()
def budget(
    paths: Optional[List[str]] = typer.Argument(None, help="Files and/or directories in the file pool."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model whose context window is used."),
    system: Optional[str] = typer.Option(None, "--system", "-s", help="System instructions."),
    message: Optional[List[str]] = typer.Option(None, "--message", help="User message(s) in the conversation."),
):
    """Prints conversation, file-pool and combined token counts against the model limit."""
    config = get_config()
    model = model or config.selected_model
    system_instructions = config.system_instructions if system is None else system
    messages = [Message(id=i + 1, role=ROLE_USER, content=text) for i, text in enumerate(message or [])]

    async def _run():
        factory = _make_factory(config)
        try:
            tokenizer = _tokenizer(factory, CredentialStore().load_credential())
            pipeline = FileProcessingPipeline(_make_walker(config), tokenizer_concurrency=config.tokenizer_concurrency)
            pool = await pipeline.trigger(paths or [], model, tokenizer)
            return pool, await TokenBudgetEngine(tokenizer).recompute(messages, system_instructions, pool.files, model)
        finally:
            await factory.aclose()

    pool, result = asyncio.run(_run())
    if pool.error_message:
        typer.echo(f"File errors: {pool.error_message}", err=True)
    typer.echo(f"Model:        {model}")
    typer.echo(f"Conversation: {result.conversation_tokens:,}")
    typer.echo(f"Files:        {result.file_pool_tokens:,}")
    typer.echo(f"Combined:     {result.combined_tokens:,} / {result.limit:,}{'  (OVER LIMIT)' if result.over_limit else ''}")
    if result.error:
        typer.echo(f"Warning: {result.error}", err=True)


@app.command()
def models():
    """Lists the selectable models and their limits."""
    for info in MODEL_CATALOGUE:
        profile = limit_for(info.code)
        typer.echo(f"{info.code:<32} {info.name:<24} context={profile.context_token_limit:,} output={profile.max_output_tokens:,}")


@app.command("set-key")
def set_key(key: str = typer.Option(..., prompt="Gemini API key", hide_input=True, help="API key to store (empty clears it).")):
    """Stores the Gemini API key in the per-user credentials file."""
    if not CredentialStore().save_credential(key):
        logger.error("Could not save the API key.")
        raise typer.Exit(code=1)
    typer.echo("API key saved." if key.strip() else "API key cleared.")


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Question to send."),
    paths: Optional[List[str]] = typer.Argument(None, help="Files and/or directories to include as context."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to use."),
    system: Optional[str] = typer.Option(None, "--system", "-s", help="System instructions."),
    temperature: Optional[float] = typer.Option(None, "--temperature", min=0.0, max=2.0),
    top_p: Optional[float] = typer.Option(None, "--top-p", min=0.0, max=1.0),
    output_length: Optional[int] = typer.Option(None, "--output-length", min=1),
):
    """One-shot question with the given files as context."""
    config = get_config()
    model = model or config.selected_model
    overrides = {k: v for k, v in (("temperature", temperature), ("top_p", top_p), ("output_length", output_length)) if v is not None}
    generation = GenerationConfig(**{**config.generation.model_dump(), **overrides})
    credential = CredentialStore().load_credential()

    async def _run():
        factory = _make_factory(config)
        try:
            session = ChatSession(factory, lambda: credential, model=model, generation=generation,
                                  system_instructions=config.system_instructions if system is None else system)
            if paths:
                pipeline = FileProcessingPipeline(_make_walker(config), tokenizer_concurrency=config.tokenizer_concurrency)
                pool = await pipeline.trigger(paths, model, _tokenizer(factory, credential))
                if pool.error_message:
                    typer.echo(f"File errors: {pool.error_message}", err=True)
                session.files = pool.files
            return await session.submit(prompt)
        finally:
            await factory.aclose()

    reply = asyncio.run(_run())
    if reply is None:
        logger.error("Nothing was sent (empty prompt).")
        raise typer.Exit(code=1)
    if reply.is_error:
        typer.echo(reply.content, err=True)
        raise typer.Exit(code=1)
    typer.echo(reply.content)


if __name__ == "__main__":
    app()
