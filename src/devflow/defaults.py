"""Categories and rules installed into a fresh database."""

from __future__ import annotations

from typing import Any

from .models import UNCATEGORIZED, MatchMode, ProductivityType, RuleType

_R = MatchMode.REGEX

# Each rule is either a bare pattern (matched as ``contains``) or a
# ``(pattern, match_mode)`` pair.
DEFAULT_CATEGORIES: list[dict[str, Any]] = [
    {
        "name": "development",
        "color": "#6366F1",
        "priority": 10,
        "productivity_type": ProductivityType.PRODUCTIVE,
        "rules": {
            RuleType.APP: [
                "Code", "Visual Studio Code", "VS Code", "WebStorm", "IntelliJ",
                "PyCharm", "Cursor", "Zed", "Xcode", "Android Studio",
                "Terminal", "WezTerm", "iTerm", "Warp", "Hyper", "Alacritty", "kitty",
            ],
            RuleType.DOMAIN: [
                "github.com", "gitlab.com", "bitbucket.org",
                "stackoverflow.com", "stackexchange.com",
                "npmjs.com", "pypi.org", "crates.io",
                "localhost", "127.0.0.1",
                "developer.mozilla.org", "docs.python.org", "docs.docker.com",
            ],
            RuleType.KEYWORD: [
                (r"\bta\b", _R), (r"\btat\b", _R),
                "nvim", "vscode", "typescript", "javascript", "python",
                "webpack", "frontend", "backend",
            ],
            RuleType.DOMAIN_KEYWORD: [
                "claude.ai|typescript", "claude.ai|bug", "claude.ai|error",
                "claude.ai|code", "claude.ai|debug",
                "chat.openai.com|error", "chat.openai.com|code", "chat.openai.com|debug",
                "youtube.com|coding", "youtube.com|programming",
            ],
            RuleType.FILE_PATH: [
                (r"\.(ts|tsx|js|jsx|py|go|java|rs|c|cpp|vue|svelte)$", _R),
                (r"(package\.json|tsconfig\.json|cargo\.toml|go\.mod|requirements\.txt|pyproject\.toml)", _R),
                "/src/",
            ],
        },
    },
    {
        "name": "meetings",
        "color": "#14B8A6",
        "priority": 11,
        "is_passive": True,
        "productivity_type": ProductivityType.NEUTRAL,
        "rules": {
            RuleType.APP: ["Zoom", "zoom.us", "Microsoft Teams", "FaceTime", "Webex"],
            RuleType.DOMAIN: ["zoom.us", "meet.google.com", "teams.microsoft.com"],
            RuleType.KEYWORD: ["meeting"],
        },
    },
    {
        "name": "communication",
        "color": "#22C55E",
        "priority": 10,
        "productivity_type": ProductivityType.NEUTRAL,
        "rules": {
            RuleType.APP: ["Slack", "Discord", "Skype", "Telegram", "WhatsApp", "Messages", "Signal"],
            RuleType.DOMAIN: ["slack.com", "discord.com"],
        },
    },
    {
        "name": "email",
        "color": "#EC4899",
        "priority": 10,
        "productivity_type": ProductivityType.NEUTRAL,
        "rules": {
            RuleType.APP: ["Mail", "Outlook", "Thunderbird", "Spark", "Airmail"],
            RuleType.DOMAIN: ["mail.google.com", "outlook.com", "outlook.live.com", "mail.yahoo.com"],
            RuleType.KEYWORD: ["inbox"],
        },
    },
    {
        "name": "design",
        "color": "#F97316",
        "priority": 10,
        "productivity_type": ProductivityType.PRODUCTIVE,
        "rules": {
            RuleType.APP: ["Figma", "Sketch", "Adobe Photoshop", "Adobe Illustrator", "Affinity"],
            RuleType.DOMAIN: ["figma.com", "canva.com", "dribbble.com", "behance.net"],
            RuleType.KEYWORD: ["mockup", "prototype"],
        },
    },
    {
        "name": "knowledge_work",
        "color": "#A855F7",
        "priority": 9,
        "productivity_type": ProductivityType.PRODUCTIVE,
        "rules": {
            RuleType.APP: ["Obsidian", "Notion", "Logseq"],
            RuleType.DOMAIN: ["notion.so", "obsidian.md"],
            RuleType.FILE_PATH: [(r"\.(md|txt)$", _R)],
        },
    },
    {
        "name": "documentation",
        "color": "#8B5CF6",
        "priority": 8,
        "productivity_type": ProductivityType.PRODUCTIVE,
        "rules": {
            RuleType.APP: ["Microsoft Word", "Pages", "Excel", "Numbers", "Keynote", "PowerPoint"],
            RuleType.DOMAIN: ["docs.google.com", "sheets.google.com", "slides.google.com"],
        },
    },
    {
        "name": "research",
        "color": "#0EA5E9",
        "priority": 6,
        "productivity_type": ProductivityType.PRODUCTIVE,
        "rules": {
            RuleType.DOMAIN: [
                "wikipedia.org", "arxiv.org", "scholar.google.com",
                "claude.ai", "chat.openai.com", "chatgpt.com", "perplexity.ai",
                "medium.com", "dev.to", "news.ycombinator.com",
            ],
            RuleType.KEYWORD: ["tutorial", "documentation", "how to"],
            RuleType.DOMAIN_KEYWORD: [
                "youtube.com|tutorial", "youtube.com|course",
                "youtube.com|lecture", "youtube.com|explained",
            ],
            RuleType.FILE_PATH: [(r"\.(pdf|epub)$", _R)],
        },
    },
    {
        "name": "entertainment",
        "color": "#EF4444",
        "priority": 4,
        "is_passive": True,
        "productivity_type": ProductivityType.DISTRACTION,
        "rules": {
            RuleType.APP: ["Spotify", "Apple Music", "Netflix", "VLC", "IINA", "Plex"],
            RuleType.DOMAIN: [
                "youtube.com", "youtu.be", "netflix.com", "twitch.tv",
                "spotify.com", "disneyplus.com", "primevideo.com",
            ],
            RuleType.KEYWORD: ["official video", "trailer"],
        },
    },
    {
        "name": "social",
        "color": "#EAB308",
        "priority": 4,
        "productivity_type": ProductivityType.DISTRACTION,
        "rules": {
            RuleType.DOMAIN: [
                "twitter.com", "x.com", "facebook.com", "instagram.com",
                "reddit.com", "linkedin.com", "tiktok.com",
            ],
        },
    },
    {
        "name": UNCATEGORIZED,
        "color": "#64748B",
        "priority": 0,
        "productivity_type": ProductivityType.NEUTRAL,
        "rules": {},
    },
]


def iter_default_rules(entry: dict[str, Any]):
    """Yield ``(rule_type, pattern, match_mode)`` for one category entry."""
    for rule_type, patterns in entry["rules"].items():
        for item in patterns:
            if isinstance(item, tuple):
                pattern, mode = item
            else:
                pattern, mode = item, MatchMode.CONTAINS
            yield rule_type, pattern, mode
