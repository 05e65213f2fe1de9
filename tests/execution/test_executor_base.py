"""
Tests for scraperun.execution.executor - scratch build directory and base lifecycle.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from scraperun.core.errors import InfrastructureError, SetupError, StreamError
from scraperun.execution.executor import (
    BaseExecutor,
    ExecutionRequest,
    prepare_build_directory,
    read_procfile,
    scraper_argv,
    scraper_command,
)
from scraperun.languages import PYTHON, RUBY


def _tree(root: Path, files: dict[str, str]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


class TestPrepareBuildDirectory:
    def test_copies_tree_and_inserts_defaults(self, tmp_path):
        source = _tree(tmp_path / "src", {"scraper.py": "print(1)\n", "lib/helpers.py": "X = 1\n"})
        dest = tmp_path / "build"

        language = prepare_build_directory(source, dest)

        assert language is PYTHON
        assert (dest / "scraper.py").read_text() == "print(1)\n"
        assert (dest / "lib" / "helpers.py").exists()
        assert (dest / "requirements.txt").read_text() == PYTHON.default_config("requirements.txt")
        assert (dest / "runtime.txt").exists()
        assert (dest / "Procfile").read_text() == "scraper: python scraper.py\n"

    def test_source_is_never_modified(self, tmp_path):
        source = _tree(tmp_path / "src", {"scraper.py": "print(1)\n"})
        prepare_build_directory(source, tmp_path / "build")
        assert sorted(p.name for p in source.iterdir()) == ["scraper.py"]

    def test_existing_group_file_is_kept(self, tmp_path):
        source = _tree(tmp_path / "src", {"scraper.py": "", "requirements.txt": "requests\n"})
        dest = tmp_path / "build"
        prepare_build_directory(source, dest)
        assert (dest / "requirements.txt").read_text() == "requests\n"
        # other groups are still inserted
        assert (dest / "runtime.txt").exists()

    def test_procfile_is_always_overwritten(self, tmp_path):
        source = _tree(tmp_path / "src", {"scraper.rb": "", "Procfile": "scraper: rm -rf /\n"})
        dest = tmp_path / "build"
        prepare_build_directory(source, dest)
        assert (dest / "Procfile").read_text() == RUBY.procfile
        assert (dest / "Gemfile").exists()

    def test_no_entrypoint(self, tmp_path):
        source = _tree(tmp_path / "src", {"README.md": "hi"})
        with pytest.raises(SetupError):
            prepare_build_directory(source, tmp_path / "build")


class TestProcfile:
    def test_read_procfile(self, tmp_path):
        path = tmp_path / "Procfile"
        path.write_text("# comment\nscraper: python scraper.py\nweb: gunicorn app:app\n\n")
        assert read_procfile(path) == {"scraper": "python scraper.py", "web": "gunicorn app:app"}

    def test_missing_scraper_entry(self, tmp_path):
        (tmp_path / "Procfile").write_text("web: serve\n")
        with pytest.raises(InfrastructureError):
            scraper_command(tmp_path)

    def test_argv_anchors_build_files(self, tmp_path):
        _tree(tmp_path, {"scraper.py": "", "Procfile": "scraper: python -u scraper.py --fast\n"})
        assert scraper_argv(tmp_path, "/app") == ["python", "-u", "/app/scraper.py", "--fast"]


class _ScriptedExecutor(BaseExecutor):
    name = "scripted"

    def __init__(self, outcome):
        self.outcome = outcome
        self.seen_build_dir: Path | None = None

    async def _execute(self, request, build_dir, language, on_event):
        self.seen_build_dir = build_dir
        assert (build_dir / "Procfile").exists()
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class TestBaseExecutor:
    def _request(self, tmp_path) -> ExecutionRequest:
        repo = _tree(tmp_path / "repo", {"scraper.py": ""})
        return ExecutionRequest(repo_path=repo, data_path=tmp_path / "data", container_name="alice_repo_1")

    async def _noop(self, event):
        pass

    @pytest.mark.asyncio
    async def test_returns_status_and_cleans_scratch(self, tmp_path):
        executor = _ScriptedExecutor(7)
        status = await executor.compile_and_run(self._request(tmp_path), self._noop)
        assert status == 7
        assert not executor.seen_build_dir.exists()

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_infrastructure_error(self, tmp_path):
        executor = _ScriptedExecutor(RuntimeError("disk full"))
        with pytest.raises(InfrastructureError) as exc_info:
            await executor.compile_and_run(self._request(tmp_path), self._noop)
        assert "disk full" in exc_info.value.message
        assert exc_info.value.context.container_name == "alice_repo_1"
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_stream_error_passes_through(self, tmp_path):
        executor = _ScriptedExecutor(StreamError("read failed"))
        with pytest.raises(StreamError):
            await executor.compile_and_run(self._request(tmp_path), self._noop)
