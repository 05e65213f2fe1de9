"""Tests for scraperun.languages - entrypoint detection and default config."""

import pytest

from scraperun.languages import (
    LANGUAGES,
    NODEJS,
    PYTHON,
    RUBY,
    detect_language,
    get_language,
    missing_entrypoint_message,
    supported_scraper_files,
    to_sentence,
)


class TestDetectLanguage:
    @pytest.mark.parametrize(
        "filename, key",
        [
            ("scraper.rb", "ruby"),
            ("scraper.php", "php"),
            ("scraper.py", "python"),
            ("scraper.pl", "perl"),
            ("scraper.js", "nodejs"),
        ],
    )
    def test_detects_by_scraper_file(self, tmp_path, filename, key):
        (tmp_path / filename).write_text("")
        assert detect_language(tmp_path).key == key

    def test_nothing_recognised(self, tmp_path):
        (tmp_path / "main.go").write_text("")
        assert detect_language(tmp_path) is None

    def test_missing_directory(self, tmp_path):
        assert detect_language(tmp_path / "absent") is None

    def test_only_root_counts(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "scraper.py").write_text("")
        assert detect_language(tmp_path) is None

    def test_directory_named_like_entrypoint(self, tmp_path):
        (tmp_path / "scraper.py").mkdir()
        assert detect_language(tmp_path) is None


class TestLanguage:
    def test_closed_set(self):
        assert [language.key for language in LANGUAGES] == ["ruby", "php", "python", "perl", "nodejs"]

    def test_procfile(self):
        assert PYTHON.procfile == "scraper: python scraper.py\n"
        assert PYTHON.default_config("Procfile") == PYTHON.procfile

    def test_every_default_file_has_contents(self):
        for language in LANGUAGES:
            for group in language.default_files_to_insert:
                for filename in group:
                    assert isinstance(language.default_config(filename), str)

    def test_unknown_default(self):
        with pytest.raises(KeyError):
            RUBY.default_config("requirements.txt")

    def test_get_language(self):
        assert get_language("nodejs") is NODEJS
        with pytest.raises(KeyError):
            get_language("cobol")


class TestSentences:
    def test_to_sentence(self):
        assert to_sentence([]) == ""
        assert to_sentence(["A"]) == "A"
        assert to_sentence(["A", "B"]) == "A or B"
        assert to_sentence(["A", "B", "C"]) == "A, B, or C"

    def test_missing_entrypoint_message(self):
        assert supported_scraper_files() == ["scraper.rb", "scraper.php", "scraper.py", "scraper.pl", "scraper.js"]
        assert missing_entrypoint_message() == (
            "Can't find scraper code. Expected to find a file called "
            "scraper.rb, scraper.php, scraper.py, scraper.pl, or scraper.js in the root directory"
        )
