"""Tests for scraperun.scrapers.LocalScraper."""

import shutil
import subprocess

import pytest

from scraperun.runs.models import Scraper
from scraperun.scrapers import LocalScraper


@pytest.fixture
def scraper(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    return LocalScraper(name="weather", repo_path=repo, data_path=tmp_path / "data")


class TestLocalScraper:
    def test_satisfies_protocol(self, scraper):
        assert isinstance(scraper, Scraper)

    def test_no_revision_outside_git(self, scraper):
        assert scraper.current_revision_from_repo() is None

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_revision_from_git_checkout(self, scraper):
        repo = str(scraper.repo_path)
        (scraper.repo_path / "scraper.py").write_text("print('hi')\n")
        env = {
            "GIT_AUTHOR_NAME": "t",
            "GIT_AUTHOR_EMAIL": "t@example.com",
            "GIT_COMMITTER_NAME": "t",
            "GIT_COMMITTER_EMAIL": "t@example.com",
            "HOME": repo,
        }
        subprocess.run(["git", "init", "-q", repo], check=True, env=env)
        subprocess.run(["git", "-C", repo, "add", "."], check=True, env=env)
        subprocess.run(["git", "-C", repo, "commit", "-q", "-m", "init"], check=True, env=env)
        head = subprocess.run(
            ["git", "-C", repo, "rev-parse", "HEAD"], check=True, capture_output=True, text=True, env=env
        ).stdout.strip()

        assert scraper.current_revision_from_repo() == head

    def test_housekeeping(self, scraper):
        scraper.data_path.mkdir()
        (scraper.data_path / "data.sqlite").write_bytes(b"x" * 7)

        scraper.update_sqlite_db_size()
        scraper.reindex()

        assert scraper.sqlite_db_size == 7
        assert scraper.indexed_at is not None
