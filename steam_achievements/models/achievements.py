"""Achievement data model: scraped rows, schema entries and reconciled results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

__all__ = [
    "AchievementDetail",
    "GameAchievementData",
    "GameRef",
    "OwnedGame",
    "PlayerSummary",
    "SchemaAchievement",
    "ScrapedAchievementRow",
    "ScanSummary",
]

RARITY_ULTRA_RARE = 5.0
RARITY_RARE = 10.0
RARITY_UNCOMMON = 50.0


@dataclass(frozen=True)
class ScrapedAchievementRow:
    """One achievement row as rendered on a stats page.

    Attributes:
        key: Title plus description or time, for debugging only.
        display_name: Localized title text.
        description: Localized description text.
        icon_url: Icon image URL, empty if none was found.
        unlock_time_utc: Parsed unlock instant, if any.
        is_unlocked: Whether the row counts as unlocked.
        progress_num: Current progress for stat-tracked achievements.
        progress_denom: Target progress for stat-tracked achievements.
    """

    key: str
    display_name: str = ""
    description: str = ""
    icon_url: str = ""
    unlock_time_utc: datetime | None = None
    is_unlocked: bool = False
    progress_num: int | None = None
    progress_denom: int | None = None


@dataclass(frozen=True)
class SchemaAchievement:
    """One entry of the official achievement schema.

    Attributes:
        name: Stable API identifier.
        display_name: Localized display name.
        description: Localized description.
        icon_url: Unlocked icon URL.
        icon_gray_url: Locked icon URL.
        hidden: Whether Steam hides the achievement until unlocked.
        global_percent_unlocked: Global unlock rate in percent, if known.
    """

    name: str
    display_name: str = ""
    description: str = ""
    icon_url: str = ""
    icon_gray_url: str = ""
    hidden: bool = False
    global_percent_unlocked: float | None = None


@dataclass(frozen=True)
class AchievementDetail:
    """A schema achievement enriched with the user's scraped unlock state."""

    api_name: str
    display_name: str = ""
    description: str = ""
    unlocked_icon_path: str = ""
    locked_icon_path: str = ""
    hidden: bool = False
    global_percent_unlocked: float | None = None
    unlocked: bool = False
    unlock_time_utc: datetime | None = None
    progress_num: int | None = None
    progress_denom: int | None = None

    @property
    def global_percent(self) -> float | None:
        """Global unlock rate, clamped to 0..100.

        ``player_percent_unlocked`` from the Web API is already a percentage,
        so 0.5 means half a percent of players.
        """
        value = self.global_percent_unlocked
        if value is None:
            return None
        return min(max(value, 0.0), 100.0)

    @property
    def rarity(self) -> str | None:
        """Rarity tier derived from the global unlock rate."""
        percent = self.global_percent
        if percent is None:
            return None
        if percent < RARITY_ULTRA_RARE:
            return "ultra_rare"
        if percent < RARITY_RARE:
            return "rare"
        if percent < RARITY_UNCOMMON:
            return "uncommon"
        return "common"


@dataclass(frozen=True)
class GameAchievementData:
    """Per-game scan result handed to the result sink.

    Attributes:
        app_id: Steam application ID.
        game_name: Display name supplied by the caller.
        has_achievements: Whether the schema defines any achievements.
        playtime_seconds: Total playtime in seconds.
        last_updated_utc: When this result was built.
        achievements: Reconciled achievements, in schema order.
        provider_name: Source of the data.
    """

    app_id: int
    game_name: str
    has_achievements: bool
    playtime_seconds: int = 0
    last_updated_utc: datetime | None = None
    achievements: tuple[AchievementDetail, ...] = ()
    provider_name: str = "Steam"

    @property
    def no_achievements(self) -> bool:
        return not self.has_achievements

    @property
    def unlocked_count(self) -> int:
        return sum(1 for a in self.achievements if a.unlocked)


@dataclass(frozen=True)
class OwnedGame:
    """Owned-games entry with app info."""

    app_id: int
    name: str = ""
    playtime_minutes: int = 0
    last_played: int = 0


@dataclass(frozen=True)
class PlayerSummary:
    """Public profile summary of one Steam account."""

    steam_id: str
    persona_name: str = ""
    avatar: str = ""
    avatar_medium: str = ""
    avatar_full: str = ""


@dataclass
class ScanSummary:
    """Counts reported at the end of a scan run."""

    games_total: int = 0
    games_refreshed: int = 0
    games_with_achievements: int = 0
    games_without_achievements: int = 0
    games_skipped: int = 0
    auth_required: bool = False
    parse_failures: int = 0
    cancelled: bool = False
    failed_app_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class GameRef:
    """A game to scan, as supplied by the caller.

    Attributes:
        name: Display name.
        game_id: Platform identifier; numeric text for Steam apps.
    """

    name: str
    game_id: str | int | None = None

    @property
    def app_id(self) -> int | None:
        """The Steam app ID, or None if ``game_id`` is not a positive integer."""
        text = str(self.game_id).strip() if self.game_id is not None else ""
        if not text.isdigit():
            return None
        value = int(text)
        return value if value > 0 else None
