# tests/core/test_file_pipeline.py
import asyncio
import threading
import time

import fitz
import pytest

from contextchat.core import extractors
from contextchat.core.errors import MissingCredential, RateLimited
from contextchat.core.file_pipeline import NO_CREDENTIAL_WARNING, FileProcessingPipeline
from contextchat.core.fs_walker import DirectoryWalker
from contextchat.core.models import WalkResult

MODEL = "gemini-2.0-flash"


def _populate(directory, count):
    for i in range(count):
        (directory / f"doc{i}.txt").write_text(f"word{i} " * (i + 1))


@pytest.mark.asyncio
async def test_empty_selection_gives_empty_pool_without_io(mocker, fake_tokenizer):
    walker = DirectoryWalker()
    read = mocker.spy(walker, "read_selection_recursively")
    list_dir = mocker.spy(walker.fs, "list_dir")
    pipeline = FileProcessingPipeline(walker)
    pipeline.files = ["stale"]
    pipeline.file_pool_tokens = 99

    result = await pipeline.trigger([], MODEL, fake_tokenizer)

    assert result.files == [] and result.file_pool_tokens == 0
    assert pipeline.files == [] and pipeline.file_pool_tokens == 0
    assert not pipeline.is_loading
    read.assert_not_called()
    list_dir.assert_not_called()
    assert fake_tokenizer.calls == []


@pytest.mark.asyncio
async def test_pipeline_extracts_and_counts(tmp_path, fake_tokenizer):
    _populate(tmp_path, 3)
    doc = fitz.open(); doc.new_page().insert_text((72, 72), "pdf words here"); doc.save(str(tmp_path / "p.pdf")); doc.close()
    (tmp_path / "r.rtf").write_text(r"{\rtf1 rich\par text}")
    pipeline = FileProcessingPipeline(DirectoryWalker())

    result = await pipeline.trigger([str(tmp_path)], MODEL, fake_tokenizer)

    by_name = {f.name: f for f in pipeline.files}
    assert set(by_name) == {"doc0.txt", "doc1.txt", "doc2.txt", "p.pdf", "r.rtf"}
    assert by_name["p.pdf"].content == "pdf words here"
    assert by_name["p.pdf"].token_count == 3
    assert by_name["r.rtf"].content == "rich\ntext"
    assert pipeline.file_pool_tokens == sum(f.token_count for f in pipeline.files) == result.file_pool_tokens
    assert pipeline.last_error is None
    assert all(model == MODEL for _, model in fake_tokenizer.calls)


@pytest.mark.asyncio
async def test_single_unreadable_file_leaves_nine(tmp_path, fake_tokenizer):
    _populate(tmp_path, 10)
    (tmp_path / "doc5.txt").unlink()
    (tmp_path / "doc5.pdf").write_bytes(b"not really a pdf")
    pipeline = FileProcessingPipeline(DirectoryWalker())

    result = await pipeline.trigger([str(tmp_path)], MODEL, fake_tokenizer)

    assert len(pipeline.files) == 9
    assert len(result.errors) == 1
    assert result.errors[0].name == "doc5.pdf"
    assert "doc5.pdf" in pipeline.last_error
    assert result.fatal_error is None


@pytest.mark.asyncio
async def test_tokenizer_failure_excludes_only_that_file(tmp_path, make_tokenizer):
    (tmp_path / "good.txt").write_text("fine words")
    (tmp_path / "bad.txt").write_text("poison words")
    tokenizer = make_tokenizer(fail_for={"poison"}, error=RateLimited())
    pipeline = FileProcessingPipeline(DirectoryWalker())

    result = await pipeline.trigger([str(tmp_path)], MODEL, tokenizer)

    assert [f.name for f in pipeline.files] == ["good.txt"]
    assert [e.name for e in result.errors] == ["bad.txt"]
    assert "Rate Limit" in result.errors[0].message


@pytest.mark.asyncio
async def test_missing_credential_keeps_files_with_zero_tokens(tmp_path, make_tokenizer):
    _populate(tmp_path, 2)
    pipeline = FileProcessingPipeline(DirectoryWalker())

    result = await pipeline.trigger([str(tmp_path)], MODEL, make_tokenizer(error=MissingCredential()))

    assert len(pipeline.files) == 2
    assert pipeline.file_pool_tokens == 0
    assert result.errors == []
    assert result.warnings == [NO_CREDENTIAL_WARNING]


@pytest.mark.asyncio
async def test_no_tokenizer_warns_once(tmp_path):
    _populate(tmp_path, 3)
    pipeline = FileProcessingPipeline(DirectoryWalker())
    result = await pipeline.trigger([str(tmp_path)], MODEL, None)
    assert len(result.files) == 3
    assert result.warnings == [NO_CREDENTIAL_WARNING]


@pytest.mark.asyncio
async def test_walker_failure_keeps_previous_pool(tmp_path, mocker, fake_tokenizer):
    _populate(tmp_path, 2)
    walker = DirectoryWalker()
    pipeline = FileProcessingPipeline(walker)
    await pipeline.trigger([str(tmp_path)], MODEL, fake_tokenizer)
    previous = list(pipeline.files)
    previous_tokens = pipeline.file_pool_tokens

    mocker.patch.object(walker, "read_selection_recursively", side_effect=OSError("disk on fire"))
    result = await pipeline.trigger([str(tmp_path)], MODEL, fake_tokenizer)

    assert result.fatal_error and "disk on fire" in result.fatal_error
    assert pipeline.files == previous
    assert pipeline.file_pool_tokens == previous_tokens
    assert pipeline.last_error == result.fatal_error
    assert not pipeline.is_loading


@pytest.mark.asyncio
async def test_stale_completion_is_not_committed(tmp_path, mocker, fake_tokenizer):
    (tmp_path / "old.txt").write_text("old")
    (tmp_path / "new.txt").write_text("new")
    walker = DirectoryWalker()
    real_read = walker.read_selection_recursively
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_read(paths):
        paths = list(paths)
        if any(p.endswith("old.txt") for p in paths):
            started.set()
            await release.wait()
        return await real_read(paths)

    mocker.patch.object(walker, "read_selection_recursively", side_effect=slow_read)
    pipeline = FileProcessingPipeline(walker)

    old_task = asyncio.create_task(pipeline.trigger([str(tmp_path / "old.txt")], MODEL, fake_tokenizer))
    await started.wait()
    new_result = await pipeline.trigger([str(tmp_path / "new.txt")], MODEL, fake_tokenizer)
    release.set()
    old_result = await old_task

    assert not new_result.stale
    assert old_result.stale
    assert [f.name for f in pipeline.files] == ["new.txt"]
    assert not pipeline.is_loading


@pytest.mark.asyncio
async def test_clear_invalidates_in_flight_load(mocker, fake_tokenizer):
    walker = DirectoryWalker()
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_read(paths):
        started.set()
        await release.wait()
        return WalkResult()

    mocker.patch.object(walker, "read_selection_recursively", side_effect=slow_read)
    pipeline = FileProcessingPipeline(walker)
    task = asyncio.create_task(pipeline.trigger(["/somewhere"], MODEL, fake_tokenizer))
    await started.wait()
    assert pipeline.is_loading

    pipeline.clear()
    release.set()
    result = await task

    assert result.stale
    assert pipeline.files == [] and not pipeline.is_loading


@pytest.mark.asyncio
async def test_tokenizer_concurrency_is_bounded(tmp_path):
    _populate(tmp_path, 8)
    in_flight = 0
    peak = 0

    class SlowTokenizer:
        async def count_tokens(self, text, model_id):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return 1

    pipeline = FileProcessingPipeline(DirectoryWalker(), tokenizer_concurrency=2)
    result = await pipeline.trigger([str(tmp_path)], MODEL, SlowTokenizer())

    assert result.file_pool_tokens == 8
    assert peak <= 2


@pytest.mark.asyncio
async def test_pdf_extraction_never_overlaps(tmp_path, mocker, fake_tokenizer):
    for i in range(6):
        doc = fitz.open()
        for page_number in range(3):
            doc.new_page().insert_text((72, 72), f"doc {i} page {page_number}")
        doc.save(str(tmp_path / f"doc{i}.pdf")); doc.close()

    real_page_text = extractors._page_text
    guard = threading.Lock()
    active = 0
    peak = 0

    def tracked_page_text(page):
        nonlocal active, peak
        with guard:
            active += 1
            peak = max(peak, active)
        try:
            time.sleep(0.005)
            return real_page_text(page)
        finally:
            with guard:
                active -= 1

    mocker.patch.object(extractors, "_page_text", side_effect=tracked_page_text)
    result = await FileProcessingPipeline(DirectoryWalker()).trigger([str(tmp_path)], MODEL, fake_tokenizer)

    assert len(result.files) == 6 and result.errors == []
    assert peak == 1


@pytest.mark.asyncio
async def test_progress_goes_to_the_trigger_that_produced_it(tmp_path, mocker, fake_tokenizer):
    (tmp_path / "old.txt").write_text("old")
    (tmp_path / "new.txt").write_text("new")
    walker = DirectoryWalker()
    real_read = walker.read_selection_recursively
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_read(paths):
        paths = list(paths)
        if any(p.endswith("old.txt") for p in paths):
            started.set()
            await release.wait()
        return await real_read(paths)

    mocker.patch.object(walker, "read_selection_recursively", side_effect=slow_read)
    pipeline = FileProcessingPipeline(walker)
    old_messages, new_messages = [], []

    old_task = asyncio.create_task(pipeline.trigger([str(tmp_path / "old.txt")], MODEL, fake_tokenizer, old_messages.append))
    await started.wait()
    await pipeline.trigger([str(tmp_path / "new.txt")], MODEL, fake_tokenizer, new_messages.append)
    release.set()
    await old_task

    assert any("old.txt" in m for m in old_messages)
    assert not any("new.txt" in m for m in old_messages)
    assert any("new.txt" in m for m in new_messages)
    assert not any("old.txt" in m for m in new_messages)


@pytest.mark.asyncio
async def test_clear_empties_pool_immediately(tmp_path, mocker, fake_tokenizer):
    _populate(tmp_path, 3)
    walker = DirectoryWalker()
    pipeline = FileProcessingPipeline(walker)
    await pipeline.trigger([str(tmp_path)], MODEL, fake_tokenizer)
    assert pipeline.file_pool_tokens > 0
    read = mocker.spy(walker, "read_selection_recursively")
    calls_before = len(fake_tokenizer.calls)

    pipeline.clear()

    assert pipeline.files == [] and pipeline.file_pool_tokens == 0
    assert not pipeline.is_loading and pipeline.last_error is None
    read.assert_not_called()
    assert len(fake_tokenizer.calls) == calls_before


@pytest.mark.asyncio
async def test_superseded_load_finishing_leaves_newer_load_running(tmp_path, mocker, fake_tokenizer):
    (tmp_path / "old.txt").write_text("old")
    (tmp_path / "new.txt").write_text("new")
    walker = DirectoryWalker()
    real_read = walker.read_selection_recursively
    new_started, release_new = asyncio.Event(), asyncio.Event()

    async def slow_read(paths):
        paths = list(paths)
        if any(p.endswith("new.txt") for p in paths):
            new_started.set()
            await release_new.wait()
        return await real_read(paths)

    mocker.patch.object(walker, "read_selection_recursively", side_effect=slow_read)
    pipeline = FileProcessingPipeline(walker)

    old_task = asyncio.create_task(pipeline.trigger([str(tmp_path / "old.txt")], MODEL, fake_tokenizer))
    new_task = asyncio.create_task(pipeline.trigger([str(tmp_path / "new.txt")], MODEL, fake_tokenizer))
    await new_started.wait()
    old_result = await old_task

    assert old_result.stale
    assert pipeline.is_loading
    assert pipeline.files == []

    release_new.set()
    await new_task
    assert not pipeline.is_loading
    assert [f.name for f in pipeline.files] == ["new.txt"]
