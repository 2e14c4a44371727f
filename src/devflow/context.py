"""Derive structured hints (project, file, language, domain) from window data.

Everything in this module is pure: no I/O and no state. Any field may be
missing from the result; callers treat absence as "unknown", not as an error.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Optional
from urllib.parse import SplitResult, parse_qs, urlsplit

from .normalization import app_key

EDITOR_APPS = frozenset({"code", "visual studio code", "code - insiders", "cursor", "vscodium"})
TERMINAL_APPS = frozenset(
    {
        "terminal",
        "iterm2",
        "iterm",
        "warp",
        "hyper",
        "alacritty",
        "kitty",
        "wezterm",
        "wezterm-gui",
        "gnome-terminal",
        "gnome-terminal-server",
        "konsole",
        "windowsterminal",
    }
)

_EDITOR_SUFFIX = r"(?:Visual Studio Code|Code - Insiders|Code|Cursor|VSCodium)"
_SEP = r"\s[-—]\s"
_EDITOR_FULL = re.compile(rf"^(.+?){_SEP}(.+?){_SEP}{_EDITOR_SUFFIX}$")
_EDITOR_PROJECT_ONLY = re.compile(rf"^(.+?){_SEP}{_EDITOR_SUFFIX}$")
_SEP_SPLIT = re.compile(_SEP)

_TERMINAL_PATH = re.compile(r"(?:~|/)[^\s:]+")
_TERMINAL_COMMAND = re.compile(r":\s*([^\s]+)")
_PROJECT_CONTAINER = re.compile(r"(?:projects|repos|dev|code)/([^/]+)", re.IGNORECASE)

_SO_QUESTION = re.compile(r"/questions/(\d+)")

LANGUAGES: dict[str, str] = {
    "js": "JavaScript",
    "mjs": "JavaScript",
    "ts": "TypeScript",
    "jsx": "React",
    "tsx": "React TypeScript",
    "py": "Python",
    "java": "Java",
    "cpp": "C++",
    "c": "C",
    "h": "C",
    "cs": "C#",
    "go": "Go",
    "rs": "Rust",
    "rb": "Ruby",
    "php": "PHP",
    "html": "HTML",
    "css": "CSS",
    "scss": "SCSS",
    "sass": "Sass",
    "less": "Less",
    "md": "Markdown",
    "json": "JSON",
    "toml": "TOML",
    "yaml": "YAML",
    "yml": "YAML",
    "xml": "XML",
    "sql": "SQL",
    "sh": "Shell",
    "bash": "Bash",
    "zsh": "Zsh",
    "swift": "Swift",
    "kt": "Kotlin",
    "dart": "Dart",
    "vue": "Vue",
    "svelte": "Svelte",
}


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return _drop_empty(asdict(self))


@dataclass(slots=True)
class GitHubContext(_Serializable):
    owner: str
    repo: str
    section: Optional[str] = None
    item_number: Optional[str] = None


@dataclass(slots=True)
class YouTubeContext(_Serializable):
    video_title: str
    video_id: str
    is_short: bool = False


@dataclass(slots=True)
class StackOverflowContext(_Serializable):
    question: str
    question_id: str


@dataclass(slots=True)
class BrowserContext(_Serializable):
    domain: str
    path: str
    is_localhost: bool
    github: Optional[GitHubContext] = None
    youtube: Optional[YouTubeContext] = None
    stackoverflow: Optional[StackOverflowContext] = None


@dataclass(slots=True)
class EditorContext(_Serializable):
    filename: str
    project: str
    file_type: str
    language: str


@dataclass(slots=True)
class TerminalContext(_Serializable):
    current_path: Optional[str] = None
    current_command: Optional[str] = None
    project: Optional[str] = None


@dataclass(slots=True)
class ExtractedContext(_Serializable):
    project: Optional[str] = None
    filename: Optional[str] = None
    file_type: Optional[str] = None
    language: Optional[str] = None
    domain: Optional[str] = None
    browser: Optional[BrowserContext] = None
    editor: Optional[EditorContext] = None
    terminal: Optional[TerminalContext] = None

    @property
    def file_path(self) -> Optional[str]:
        """Best path-like hint for file-path rules."""
        if self.filename:
            return self.filename
        if self.terminal and self.terminal.current_path:
            return self.terminal.current_path
        return None


def _drop_empty(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: _drop_empty(item)
            for key, item in value.items()
            if item is not None and item != ""
        }
    return value


def extract(app_name: str, title: str, url: Optional[str] = None) -> ExtractedContext:
    """Collect every hint available for one observation."""
    context = ExtractedContext()
    key = app_key(app_name)
    title = title or ""

    if key in EDITOR_APPS or "vs code" in key:
        editor = extract_editor_context(title)
        if editor:
            context.editor = editor
            context.project = editor.project or None
            context.filename = editor.filename or None
            context.file_type = editor.file_type or None
            context.language = editor.language or None

    if key in TERMINAL_APPS:
        terminal = extract_terminal_context(title)
        context.terminal = terminal
        context.project = terminal.project

    if url:
        browser = extract_browser_context(url, title)
        if browser:
            context.browser = browser
            context.domain = browser.domain
            if browser.github:
                context.project = f"{browser.github.owner}/{browser.github.repo}"

    return context


def extract_browser_context(url: str, title: str = "") -> Optional[BrowserContext]:
    """Parse a URL into domain/path hints; ``None`` when it cannot be parsed."""
    try:
        parsed = urlsplit(url.strip())
        hostname = parsed.hostname
    except ValueError:
        return None
    if not hostname:
        return None

    domain = hostname[4:] if hostname.startswith("www.") else hostname
    return BrowserContext(
        domain=domain,
        path=parsed.path or "/",
        is_localhost=domain == "localhost" or domain.startswith("127.0.0.1"),
        github=_github_context(domain, parsed),
        youtube=_youtube_context(domain, parsed, title),
        stackoverflow=_stackoverflow_context(domain, parsed, title),
    )


def _github_context(domain: str, parsed: SplitResult) -> Optional[GitHubContext]:
    if not _is_site(domain, "github.com"):
        return None
    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        return None
    return GitHubContext(
        owner=parts[0],
        repo=parts[1],
        section=parts[2] if len(parts) > 2 else None,
        item_number=parts[3] if len(parts) > 3 else None,
    )


def _youtube_context(domain: str, parsed: SplitResult, title: str) -> Optional[YouTubeContext]:
    video_id: Optional[str] = None
    is_short = False
    if _is_site(domain, "youtu.be"):
        video_id = parsed.path.strip("/").split("/")[0] or None
    elif _is_site(domain, "youtube.com"):
        if parsed.path == "/watch":
            video_id = (parse_qs(parsed.query).get("v") or [None])[0]
        elif parsed.path.startswith("/shorts/"):
            video_id = parsed.path[len("/shorts/"):].split("/")[0] or None
            is_short = True
    else:
        return None
    if not video_id:
        return None
    video_title = re.sub(r"\s[-—]\sYouTube$", "", title).strip()
    return YouTubeContext(video_title=video_title, video_id=video_id, is_short=is_short)


def _stackoverflow_context(
    domain: str, parsed: SplitResult, title: str
) -> Optional[StackOverflowContext]:
    if not _is_site(domain, "stackoverflow.com"):
        return None
    match = _SO_QUESTION.match(parsed.path)
    if not match:
        return None
    question = re.sub(r"\s[-—]\sStack Overflow$", "", title).strip()
    return StackOverflowContext(question=question, question_id=match.group(1))


def _is_site(domain: str, site: str) -> bool:
    return domain == site or domain.endswith("." + site)


def extract_editor_context(title: str) -> Optional[EditorContext]:
    """Parse ``"<file> - <project> - <editor>"`` style titles.

    Tried in order: the full three-segment form, the ``<project> - <editor>``
    form, a generic split on the separator (file first, project second), and
    finally the whole title as the project name.
    """
    title = title.strip()
    if not title:
        return None

    match = _EDITOR_FULL.match(title)
    if match:
        return _editor_context(match.group(1), match.group(2))

    match = _EDITOR_PROJECT_ONLY.match(title)
    if match:
        return EditorContext(filename="", project=match.group(1), file_type="", language="")

    parts = _SEP_SPLIT.split(title)
    if len(parts) >= 2:
        return _editor_context(parts[0], parts[1])

    return EditorContext(filename="", project=title, file_type="", language="")


def _editor_context(filename: str, project: str) -> EditorContext:
    filename = filename.lstrip("● ").strip()
    extension = filename.rsplit(".", 1)[1] if "." in filename else ""
    return EditorContext(
        filename=filename,
        project=project.strip(),
        file_type=extension,
        language=language_for_extension(extension),
    )


def language_for_extension(extension: str) -> str:
    """Map a file extension to a language label; unknown ones are upper-cased."""
    if not extension:
        return ""
    return LANGUAGES.get(extension.lower(), extension.upper())


def extract_terminal_context(title: str) -> TerminalContext:
    path_match = _TERMINAL_PATH.search(title or "")
    current_path = path_match.group(0) if path_match else None
    command_match = _TERMINAL_COMMAND.search(title or "")
    return TerminalContext(
        current_path=current_path,
        current_command=command_match.group(1) if command_match else None,
        project=project_from_path(current_path),
    )


def project_from_path(path: Optional[str]) -> Optional[str]:
    """Project directory under a conventional container folder, else the last segment."""
    if not path:
        return None
    match = _PROJECT_CONTAINER.search(path)
    if match:
        return match.group(1)
    parts = [part for part in path.split("/") if part and part != "~"]
    return parts[-1] if parts else None
