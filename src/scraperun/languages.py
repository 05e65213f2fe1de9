"""Supported scraper languages and entrypoint detection.

A source tree is runnable when its root contains one of the recognised
scraper files. The language decides how the tree is built and started:
the Procfile command, the base image, the dependency install step and
the default dependency files inserted when the author supplied none.

The set is closed:

    ======== ============== ==========================================
    Key      Scraper file   Default files (inserted per group)
    ======== ============== ==========================================
    ruby     scraper.rb     Gemfile
    php      scraper.php    composer.json
    python   scraper.py     requirements.txt ; runtime.txt
    perl     scraper.pl     cpanfile
    nodejs   scraper.js     package.json
    ======== ============== ==========================================

Tags:
    scraperun, languages, entrypoint, procfile, detection
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

PROCFILE = "Procfile"


@dataclass(frozen=True)
class Language:
    """How scrapers written in one language are built and started."""

    key: str
    name: str
    scraper_filename: str
    command: str
    base_image: str
    install_command: str
    default_files_to_insert: tuple[tuple[str, ...], ...] = ()
    default_contents: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def procfile(self) -> str:
        return f"scraper: {self.command}\n"

    def default_config(self, filename: str) -> str:
        """Contents of the default version of ``filename`` for this language."""
        if filename == PROCFILE:
            return self.procfile
        try:
            return self.default_contents[filename]
        except KeyError:
            raise KeyError(f"{self.name} has no default {filename}") from None

    def is_entrypoint_present(self, path: str | Path) -> bool:
        return (Path(path) / self.scraper_filename).is_file()


RUBY = Language(
    key="ruby",
    name="Ruby",
    scraper_filename="scraper.rb",
    command="bundle exec ruby scraper.rb",
    base_image="ruby:3.3-slim",
    install_command="bundle install",
    default_files_to_insert=(("Gemfile",),),
    default_contents={
        "Gemfile": (
            'source "https://rubygems.org"\n'
            "\n"
            'gem "scraperwiki", git: "https://github.com/openaustralia/scraperwiki-ruby.git", branch: "morph_defaults"\n'
            'gem "mechanize"\n'
        ),
    },
)

PHP = Language(
    key="php",
    name="PHP",
    scraper_filename="scraper.php",
    command="php -d memory_limit=-1 scraper.php",
    base_image="php:8.3-cli",
    install_command="composer install --no-interaction --no-dev",
    default_files_to_insert=(("composer.json",),),
    default_contents={
        "composer.json": (
            "{\n"
            '    "require": {\n'
            '        "openaustralia/scraperwiki": "dev-master"\n'
            "    }\n"
            "}\n"
        ),
    },
)

PYTHON = Language(
    key="python",
    name="Python",
    scraper_filename="scraper.py",
    command="python scraper.py",
    base_image="python:3.12-slim",
    install_command="pip install --no-cache-dir -r requirements.txt",
    default_files_to_insert=(("requirements.txt",), ("runtime.txt",)),
    default_contents={
        "requirements.txt": "scraperwiki\nlxml\ncssselect\n",
        "runtime.txt": "python-3.12\n",
    },
)

PERL = Language(
    key="perl",
    name="Perl",
    scraper_filename="scraper.pl",
    command="perl -Mlib=/app/local/lib/perl5 scraper.pl",
    base_image="perl:5.38",
    install_command="cpanm --notest --local-lib /app/local --installdeps .",
    default_files_to_insert=(("cpanfile",),),
    default_contents={
        "cpanfile": "requires 'Database::DumpTruck';\nrequires 'LWP::Simple';\n",
    },
)

NODEJS = Language(
    key="nodejs",
    name="Node.js",
    scraper_filename="scraper.js",
    command="node --expose-gc scraper.js",
    base_image="node:20-slim",
    install_command="npm install --omit=dev",
    default_files_to_insert=(("package.json",),),
    default_contents={
        "package.json": (
            "{\n"
            '  "name": "scraper",\n'
            '  "private": true,\n'
            '  "dependencies": {\n'
            '    "sqlite3": "latest"\n'
            "  }\n"
            "}\n"
        ),
    },
)

LANGUAGES: tuple[Language, ...] = (RUBY, PHP, PYTHON, PERL, NODEJS)


def get_language(key: str) -> Language:
    for language in LANGUAGES:
        if language.key == key:
            return language
    raise KeyError(f"Unknown language: {key!r}")


def detect_language(path: str | Path) -> Language | None:
    """The language whose scraper file sits at the root of ``path``, if any."""
    for language in LANGUAGES:
        if language.is_entrypoint_present(path):
            return language
    return None


def supported_scraper_files() -> list[str]:
    return [language.scraper_filename for language in LANGUAGES]


def to_sentence(words: Sequence[str], last_word_connector: str = ", or ") -> str:
    """Join words as "A", "A or B" or "A, B, or C"."""
    words = list(words)
    if not words:
        return ""
    if len(words) == 1:
        return words[0]
    if len(words) == 2:
        return f"{words[0]} or {words[1]}"
    return ", ".join(words[:-1]) + last_word_connector + words[-1]


def missing_entrypoint_message() -> str:
    return (
        "Can't find scraper code. Expected to find a file called "
        + to_sentence(supported_scraper_files())
        + " in the root directory"
    )
