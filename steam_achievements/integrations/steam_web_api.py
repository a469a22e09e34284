"""Steam Web API client for the achievement ground truth.

Covers owned games (playtime), the achievement schema with global unlock
percentages, the simple "does this app have achievements" probe, and
batched player summaries. Every call fails soft: network or decoding
errors produce an empty result. Only cancellation propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import requests

from steam_achievements.core.cancellation import CancellationToken
from steam_achievements.models.achievements import OwnedGame, PlayerSummary, SchemaAchievement

logger = logging.getLogger("steamach.steam_web_api")

__all__ = ["GameSchema", "SteamWebAPI"]

_API_BASE = "https://api.steampowered.com"
_ICON_BASE = "https://cdn.akamai.steamstatic.com/steamcommunity/public/images/apps"
_SUMMARIES_BATCH_SIZE = 100
_FALLBACK_LANGUAGE = "english"
_TIMEOUT = (10, 30)

_HEADERS: dict[str, str] = {
    "Accept": "application/json",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
}


@dataclass(frozen=True)
class GameSchema:
    """Achievement schema of one app.

    Attributes:
        app_id: Steam application ID.
        achievements: Schema entries in API order.
        global_percentages: Unlock percentage per lowercased API name.
    """

    app_id: int
    achievements: tuple[SchemaAchievement, ...] = ()
    global_percentages: dict[str, float] = field(default_factory=dict)

    def global_percent(self, name: str) -> float | None:
        return self.global_percentages.get(name.lower()) if name else None


class SteamWebAPI:
    """Key-authenticated JSON client. Never sends community cookies.

    Attributes:
        api_key: Steam Web API key.
    """

    def __init__(self, api_key: str | None, session: requests.Session | None = None) -> None:
        """Initializes the client.

        Args:
            api_key: Steam Web API key. Calls return empty results without one.
            session: Cookie-free session to reuse. A new one is created if omitted.
        """
        self.api_key: str = (api_key or "").strip()
        self._session = session or requests.Session()
        self._session.headers.update(_HEADERS)

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)

    def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any] | None:
        """GETs an API endpoint and decodes the JSON body.

        Raises:
            requests.RequestException: On network or HTTP errors.
            ValueError: On an undecodable body.
        """
        response = self._session.get(f"{_API_BASE}/{path}", params={"key": self.api_key, **params}, timeout=_TIMEOUT)
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Owned games
    # ------------------------------------------------------------------

    def get_owned_games(self, steam_id: str, include_played_free_games: bool = True) -> dict[int, int]:
        """Returns total playtime in minutes per owned app.

        Duplicate app entries keep the largest playtime.
        """
        if not self.has_key or not steam_id:
            return {}

        try:
            data = self._get_json(
                "IPlayerService/GetOwnedGames/v1/",
                {
                    "steamid": steam_id,
                    "include_appinfo": 0,
                    "include_played_free_games": int(include_played_free_games),
                },
            )
        except (requests.RequestException, ValueError) as exc:
            logger.debug("GetOwnedGames failed for steamid=%s: %s", steam_id, exc)
            return {}

        result: dict[int, int] = {}
        for game in ((data or {}).get("response") or {}).get("games") or []:
            app_id = int(game.get("appid") or 0)
            if app_id <= 0:
                continue
            minutes = max(0, int(game.get("playtime_forever") or 0))
            if minutes >= result.get(app_id, -1):
                result[app_id] = minutes
        return result

    def get_owned_games_detailed(
        self,
        steam_id: str,
        include_played_free_games: bool = True,
        token: CancellationToken | None = None,
    ) -> list[OwnedGame]:
        """Returns owned games with name and last-played time."""
        if not self.has_key or not steam_id:
            return []
        if token is not None:
            token.raise_if_cancelled()

        try:
            data = self._get_json(
                "IPlayerService/GetOwnedGames/v1/",
                {
                    "steamid": steam_id,
                    "include_appinfo": 1,
                    "include_played_free_games": int(include_played_free_games),
                },
            )
        except (requests.RequestException, ValueError) as exc:
            logger.debug("GetOwnedGames (detailed) failed for steamid=%s: %s", steam_id, exc)
            return []

        games: list[OwnedGame] = []
        for game in ((data or {}).get("response") or {}).get("games") or []:
            app_id = int(game.get("appid") or 0)
            if app_id <= 0:
                continue
            games.append(
                OwnedGame(
                    app_id=app_id,
                    name=str(game.get("name") or ""),
                    playtime_minutes=max(0, int(game.get("playtime_forever") or 0)),
                    last_played=int(game.get("rtime_last_played") or 0),
                )
            )
        return games

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def has_achievements(self, app_id: int, language: str = _FALLBACK_LANGUAGE) -> bool | None:
        """Whether the app's stats schema lists any achievements.

        Returns:
            None when the lookup itself failed.
        """
        if not self.has_key or app_id <= 0:
            return False
        try:
            data = self._get_json(
                "ISteamUserStats/GetSchemaForGame/v2/",
                {"appid": app_id, "l": language or _FALLBACK_LANGUAGE},
            )
        except (requests.RequestException, ValueError) as exc:
            logger.debug("GetSchemaForGame failed for appid=%d: %s", app_id, exc)
            return None
        game = ((data or {}).get("game") or {}).get("availableGameStats") or {}
        return bool(game.get("achievements"))

    def get_schema(
        self,
        app_id: int,
        language: str | None = None,
        token: CancellationToken | None = None,
    ) -> GameSchema | None:
        """Fetches achievement definitions and global unlock percentages.

        Retries once in English when the requested language returns
        nothing, since per-language schemas can be incomplete.

        Returns:
            The schema, or None if the app has no achievements or the call failed.
        """
        language = (language or "").strip() or _FALLBACK_LANGUAGE
        schema = self._fetch_schema(app_id, language, token)
        if schema is None and language.lower() != _FALLBACK_LANGUAGE:
            logger.info("Schema fetch failed for '%s', retrying in English for appid=%d", language, app_id)
            schema = self._fetch_schema(app_id, _FALLBACK_LANGUAGE, token)
        return schema

    def _fetch_schema(self, app_id: int, language: str, token: CancellationToken | None) -> GameSchema | None:
        if not self.has_key or app_id <= 0:
            logger.warning("Schema requested without API key or with invalid appid=%d", app_id)
            return None
        if token is not None:
            token.raise_if_cancelled()

        try:
            data = self._get_json(
                "IPlayerService/GetGameAchievements/v1/",
                {"appid": app_id, "language": language},
            )
        except (requests.RequestException, ValueError) as exc:
            logger.debug("GetGameAchievements failed for appid=%d: %s", app_id, exc)
            return None

        raw_achievements = ((data or {}).get("response") or {}).get("achievements") or []
        if not raw_achievements:
            return None

        achievements: list[SchemaAchievement] = []
        percentages: dict[str, float] = {}
        for raw in raw_achievements:
            name = str(raw.get("internal_name") or "")
            percent = _parse_percent(raw.get("player_percent_unlocked"))
            if name and percent is not None:
                percentages[name.lower()] = percent
            achievements.append(
                SchemaAchievement(
                    name=name,
                    display_name=str(raw.get("localized_name") or ""),
                    description=str(raw.get("localized_desc") or ""),
                    icon_url=f"{_ICON_BASE}/{app_id}/{raw.get('icon') or ''}",
                    icon_gray_url=f"{_ICON_BASE}/{app_id}/{raw.get('icon_gray') or ''}",
                    hidden=bool(raw.get("hidden")),
                    global_percent_unlocked=percent,
                )
            )

        return GameSchema(app_id=app_id, achievements=tuple(achievements), global_percentages=percentages)

    # ------------------------------------------------------------------
    # Player summaries
    # ------------------------------------------------------------------

    def get_player_summaries(
        self,
        steam_ids: Iterable[int | str],
        token: CancellationToken | None = None,
    ) -> list[PlayerSummary]:
        """Looks up public profile summaries in batches of 100.

        Failed batches are skipped. The result follows the input order of
        the distinct, positive IDs that were found.
        """
        ids: list[int] = []
        for raw in steam_ids or ():
            try:
                value = int(raw)
            except (TypeError, ValueError):
                continue
            if value > 0 and value not in ids:
                ids.append(value)

        if not ids or not self.has_key:
            return []

        by_id: dict[int, PlayerSummary] = {}
        for start in range(0, len(ids), _SUMMARIES_BATCH_SIZE):
            if token is not None:
                token.raise_if_cancelled()
            batch = ids[start : start + _SUMMARIES_BATCH_SIZE]
            try:
                data = self._get_json(
                    "ISteamUser/GetPlayerSummaries/v2/",
                    {"steamids": ",".join(str(i) for i in batch)},
                )
            except (requests.RequestException, ValueError) as exc:
                logger.debug("GetPlayerSummaries batch failed: %s", exc)
                continue

            for player in ((data or {}).get("response") or {}).get("players") or []:
                try:
                    steam_id = int(player.get("steamid"))
                except (TypeError, ValueError):
                    continue
                if steam_id <= 0:
                    continue
                by_id[steam_id] = PlayerSummary(
                    steam_id=str(steam_id),
                    persona_name=str(player.get("personaname") or ""),
                    avatar=str(player.get("avatar") or ""),
                    avatar_medium=str(player.get("avatarmedium") or ""),
                    avatar_full=str(player.get("avatarfull") or ""),
                )

        return [by_id[i] for i in ids if i in by_id]


def _parse_percent(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
