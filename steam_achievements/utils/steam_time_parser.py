"""Parser for the free-text unlock timestamps on Steam stats pages.

Steam renders unlock times in the viewer's language, in Pacific time,
e.g. ``Unlocked Apr 24, 2025 @ 5:04am`` or ``Am 29. Jan. um 17:03
freigeschaltet``. There is no machine-readable attribute, so the text is
split into a time token and a date fragment, and the date fragment is
resolved against a month-name table covering every Steam UI language.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

logger = logging.getLogger("steamach.time_parser")

__all__ = [
    "STEAM_LANGUAGE_CULTURES",
    "STEAM_TIMEZONE",
    "culture_for_language",
    "get_steam_now",
    "month_number",
    "parse_steam_unlock_time",
    "strip_diacritics",
    "timezone_offset_cookie_value",
]

STEAM_TIMEZONE = ZoneInfo("America/Los_Angeles")

# Yearless dates further ahead than this belong to the previous year.
_FUTURE_TOLERANCE = timedelta(days=2)
_MAX_NOISE_WORDS = 8
_MIN_YEAR = 1900
_MAX_YEAR = 3000

STEAM_LANGUAGE_CULTURES: dict[str, str] = {
    "english": "en-US",
    "german": "de-DE",
    "french": "fr-FR",
    "spanish": "es-ES",
    "latam": "es-419",
    "italian": "it-IT",
    "russian": "ru-RU",
    "japanese": "ja-JP",
    "portuguese": "pt-PT",
    "brazilian": "pt-BR",
    "polish": "pl-PL",
    "dutch": "nl-NL",
    "swedish": "sv-SE",
    "finnish": "fi-FI",
    "danish": "da-DK",
    "norwegian": "nb-NO",
    "hungarian": "hu-HU",
    "czech": "cs-CZ",
    "romanian": "ro-RO",
    "turkish": "tr-TR",
    "greek": "el-GR",
    "bulgarian": "bg-BG",
    "ukrainian": "uk-UA",
    "thai": "th-TH",
    "vietnamese": "vi-VN",
    "koreana": "ko-KR",
    "schinese": "zh-CN",
    "tchinese": "zh-TW",
    "arabic": "ar-SA",
}

# Numeric field order used when a date carries no month name.
_DATE_ORDERS: dict[str, str] = {
    "en-US": "mdy",
    "ja-JP": "ymd",
    "ko-KR": "ymd",
    "zh-CN": "ymd",
    "zh-TW": "ymd",
    "hu-HU": "ymd",
}

# Per language: twelve space-separated variant lists (full, genitive, abbreviated).
_MONTH_NAMES: dict[str, tuple[str, ...]] = {
    "en": (
        "january jan", "february feb", "march mar", "april apr", "may",
        "june jun", "july jul", "august aug", "september sep sept",
        "october oct", "november nov", "december dec",
    ),
    "de": (
        "januar jänner jan", "februar feb", "märz mär mrz", "april apr", "mai",
        "juni jun", "juli jul", "august aug", "september sep sept",
        "oktober okt", "november nov", "dezember dez",
    ),
    "fr": (
        "janvier janv", "février févr fév", "mars", "avril avr", "mai",
        "juin", "juillet juil", "août aout", "septembre sept",
        "octobre oct", "novembre nov", "décembre déc",
    ),
    "es": (
        "enero ene", "febrero feb", "marzo mar", "abril abr", "mayo may",
        "junio jun", "julio jul", "agosto ago", "septiembre setiembre sep sept set",
        "octubre oct", "noviembre nov", "diciembre dic",
    ),
    "it": (
        "gennaio gen", "febbraio feb", "marzo mar", "aprile apr", "maggio mag",
        "giugno giu", "luglio lug", "agosto ago", "settembre set",
        "ottobre ott", "novembre nov", "dicembre dic",
    ),
    "pt": (
        "janeiro jan", "fevereiro fev", "março mar", "abril abr", "maio mai",
        "junho jun", "julho jul", "agosto ago", "setembro set",
        "outubro out", "novembro nov", "dezembro dez",
    ),
    "ru": (
        "январь января янв", "февраль февраля фев февр", "март марта мар",
        "апрель апреля апр", "май мая", "июнь июня июн", "июль июля июл",
        "август августа авг", "сентябрь сентября сен сент",
        "октябрь октября окт", "ноябрь ноября ноя нояб", "декабрь декабря дек",
    ),
    "uk": (
        "січень січня січ", "лютий лютого лют", "березень березня бер берез",
        "квітень квітня квіт", "травень травня трав", "червень червня черв",
        "липень липня лип", "серпень серпня серп", "вересень вересня вер верес",
        "жовтень жовтня жовт", "листопад листопада лист листоп",
        "грудень грудня груд",
    ),
    "bg": (
        "януари ян", "февруари февр", "март", "април апр", "май",
        "юни", "юли", "август авг", "септември септ",
        "октомври окт", "ноември ноем", "декември дек",
    ),
    "pl": (
        "styczeń stycznia sty", "luty lutego lut", "marzec marca mar",
        "kwiecień kwietnia kwi", "maj maja", "czerwiec czerwca cze",
        "lipiec lipca lip", "sierpień sierpnia sie", "wrzesień września wrz",
        "październik października paź", "listopad listopada lis",
        "grudzień grudnia gru",
    ),
    "cs": (
        "leden ledna led", "únor února úno", "březen března bře",
        "duben dubna dub", "květen května kvě", "červen června čvn",
        "červenec července čvc", "srpen srpna srp", "září zář",
        "říjen října říj", "listopad listopadu lis", "prosinec prosince pro",
    ),
    "nl": (
        "januari jan", "februari feb", "maart mrt", "april apr", "mei",
        "juni jun", "juli jul", "augustus aug", "september sep",
        "oktober okt", "november nov", "december dec",
    ),
    "sv": (
        "januari jan", "februari feb", "mars", "april apr", "maj",
        "juni", "juli", "augusti aug", "september sep",
        "oktober okt", "november nov", "december dec",
    ),
    "da": (
        "januar jan", "februar feb", "marts mar", "april apr", "maj",
        "juni jun", "juli jul", "august aug", "september sep",
        "oktober okt", "november nov", "december dec",
    ),
    "nb": (
        "januar jan", "februar feb", "mars mar", "april apr", "mai",
        "juni jun", "juli jul", "august aug", "september sep",
        "oktober okt", "november nov", "desember des",
    ),
    "fi": (
        "tammikuu tammikuuta tammik", "helmikuu helmikuuta helmik",
        "maaliskuu maaliskuuta maalisk", "huhtikuu huhtikuuta huhtik",
        "toukokuu toukokuuta toukok", "kesäkuu kesäkuuta kesäk",
        "heinäkuu heinäkuuta heinäk", "elokuu elokuuta elok",
        "syyskuu syyskuuta syysk", "lokakuu lokakuuta lokak",
        "marraskuu marraskuuta marrask", "joulukuu joulukuuta jouluk",
    ),
    "hu": (
        "január jan", "február febr feb", "március márc", "április ápr",
        "május máj", "június jún", "július júl", "augusztus aug",
        "szeptember szept", "október okt", "november nov", "december dec",
    ),
    "ro": (
        "ianuarie ian", "februarie feb", "martie mar", "aprilie apr", "mai",
        "iunie iun", "iulie iul", "august aug", "septembrie sept",
        "octombrie oct", "noiembrie nov", "decembrie dec",
    ),
    "tr": (
        "ocak oca", "şubat şub", "mart mar", "nisan nis", "mayıs may",
        "haziran haz", "temmuz tem", "ağustos ağu", "eylül eyl",
        "ekim eki", "kasım kas", "aralık ara",
    ),
    "el": (
        "ιανουάριος ιανουαρίου ιαν", "φεβρουάριος φεβρουαρίου φεβ",
        "μάρτιος μαρτίου μαρ", "απρίλιος απριλίου απρ", "μάιος μαΐου μαΐ μαϊ",
        "ιούνιος ιουνίου ιουν", "ιούλιος ιουλίου ιουλ", "αύγουστος αυγούστου αυγ",
        "σεπτέμβριος σεπτεμβρίου σεπ", "οκτώβριος οκτωβρίου οκτ",
        "νοέμβριος νοεμβρίου νοε", "δεκέμβριος δεκεμβρίου δεκ",
    ),
    "th": (
        "มกราคม ม.ค.", "กุมภาพันธ์ ก.พ.", "มีนาคม มี.ค.", "เมษายน เม.ย.",
        "พฤษภาคม พ.ค.", "มิถุนายน มิ.ย.", "กรกฎาคม ก.ค.", "สิงหาคม ส.ค.",
        "กันยายน ก.ย.", "ตุลาคม ต.ค.", "พฤศจิกายน พ.ย.", "ธันวาคม ธ.ค.",
    ),
    "ar": (
        "يناير", "فبراير", "مارس", "أبريل إبريل ابريل", "مايو",
        "يونيو", "يوليو", "أغسطس اغسطس", "سبتمبر",
        "أكتوبر اكتوبر", "نوفمبر", "ديسمبر",
    ),
    "vi": tuple(f"thg{m} thg{m:02d} tháng{m}" for m in range(1, 13)),
    "ja": tuple(f"{m}月" for m in range(1, 13)),
    "ko": tuple(f"{m}월" for m in range(1, 13)),
}

_AM_MARKERS = ("a. m.", "a.m.", "am", "上午", "午前", "오전", "صباحًا", "صباحا", "ص")
_PM_MARKERS = ("p. m.", "p.m.", "pm", "下午", "午後", "오후", "مساءً", "مساء", "م")
# Only non-Latin markers may precede the time; "am" is a German word.
_PREFIX_MARKERS = ("上午", "午前", "오전", "下午", "午後", "오후")


def _marker_alternation(markers: tuple[str, ...]) -> str:
    return "|".join(re.escape(m) for m in sorted(markers, key=len, reverse=True))


_TIME_RE = re.compile(
    r"(?<![\d.:])(?P<hour>\d{1,2})"
    r"(?:\s*[:hH]\s?(?P<colon>\d{2})"
    r"|\s*時\s*(?P<kanji>\d{1,2})\s*分"
    r"|\s*시\s*(?P<hangul>\d{1,2})\s*분"
    r"|\.(?P<dotted>\d{2})(?!\.?\d))"
    r"(?!\d)"
)
_SUFFIX_MERIDIEM_RE = re.compile(
    r"\s*(?P<marker>" + _marker_alternation(_AM_MARKERS + _PM_MARKERS) + r")(?![a-z])",
    re.IGNORECASE,
)
_PREFIX_MERIDIEM_RE = re.compile(r"(?P<marker>" + _marker_alternation(_PREFIX_MARKERS) + r")\s*$")
_CJK_UNIT_RE = re.compile(r"(\d)\s+([年月日년월일])")
_TRAILING_PUNCT_RE = re.compile(r"[\s,\-:;|]+$")
_PIECE_RE = re.compile(r"\d{1,4}\D+|\D+|\d{1,4}")
_DIGITS_OR_LETTERS_RE = re.compile(r"\d+|\D+")


def strip_diacritics(text: str) -> str:
    """Removes Latin combining accents, keeping marks other scripts need.

    Only U+0300..U+036F are dropped, so Thai vowel signs and Arabic
    hamza survive.
    """
    decomposed = unicodedata.normalize("NFD", text)
    kept = "".join(ch for ch in decomposed if not "\u0300" <= ch <= "\u036f")
    return unicodedata.normalize("NFC", kept)


def _normalize_month_token(token: str) -> str:
    token = token.strip(".,;:").replace(".", "")
    return strip_diacritics(token).casefold()


def _build_month_table() -> dict[str, int]:
    table: dict[str, int] = {}
    for months in _MONTH_NAMES.values():
        for number, variants in enumerate(months, start=1):
            for variant in variants.split():
                key = _normalize_month_token(variant)
                if len(key) >= 2:
                    table.setdefault(key, number)
    return table


_MONTH_TABLE = _build_month_table()


def month_number(token: str) -> int | None:
    """Returns the 1-based month for a month name in any supported language."""
    key = _normalize_month_token(token)
    if len(key) < 2:
        return None
    return _MONTH_TABLE.get(key)


def culture_for_language(language: str | None) -> str:
    """Maps a Steam language name (``"german"``) to a culture tag (``"de-DE"``)."""
    if not language:
        return "en-US"
    return STEAM_LANGUAGE_CULTURES.get(language.strip().lower(), "en-US")


def get_steam_now() -> datetime:
    """Current wall-clock time in Steam's base time zone, as a naive datetime."""
    return datetime.now(STEAM_TIMEZONE).replace(tzinfo=None)


def timezone_offset_cookie_value() -> str:
    """Value of the ``timezoneOffset`` cookie pinning pages to Pacific time."""
    return "-28800,0"


def parse_steam_unlock_time(
    text: str | None,
    language: str | None = "english",
    steam_now: datetime | None = None,
) -> datetime | None:
    """Parses a Steam unlock timestamp into an aware UTC datetime.

    Args:
        text: The raw unlock text scraped from the page.
        language: Steam language the page was rendered in, used as a hint
            for numeric date order.
        steam_now: Reference "now" as naive Pacific time. Defaults to the
            current time. A yearless date more than two days ahead of it is
            placed in the previous year.

    Returns:
        The unlock instant in UTC, or None if the text cannot be parsed.
    """
    if not text or not text.strip():
        return None

    if steam_now is None:
        steam_now = get_steam_now()

    normalized = _normalize_whitespace(text)
    found = _find_time(normalized)
    if found is None:
        return None

    hour, minute, date_end = found
    date_part = _clean_date_part(normalized[:date_end])
    if not date_part:
        return None

    local = _parse_tokenized(date_part, hour, minute, steam_now)
    if local is None:
        local = _parse_generic(date_part, hour, minute, culture_for_language(language), steam_now)
    if local is None:
        return None

    return local.replace(tzinfo=STEAM_TIMEZONE).astimezone(timezone.utc)


# ------------------------------------------------------------------
# Time token
# ------------------------------------------------------------------


def _normalize_whitespace(text: str) -> str:
    for space in ("\u00a0", "\u2007", "\u202f"):
        text = text.replace(space, " ")
    return re.sub(r"\s+", " ", text).strip()


def _find_time(text: str) -> tuple[int, int, int] | None:
    """Finds the last valid time token.

    Returns:
        (hour, minute, index where the date fragment ends), or None.
    """
    result: tuple[int, int, int] | None = None
    for match in _TIME_RE.finditer(text):
        hour = int(match.group("hour"))
        minute = int(
            match.group("colon") or match.group("kanji") or match.group("hangul") or match.group("dotted")
        )
        date_end = match.start()

        meridiem: str | None = None
        suffix = _SUFFIX_MERIDIEM_RE.match(text, match.end())
        if suffix:
            meridiem = suffix.group("marker")
        else:
            prefix = _PREFIX_MERIDIEM_RE.search(text, 0, match.start())
            if prefix:
                meridiem = prefix.group("marker")
                date_end = prefix.start()

        if meridiem is not None:
            if not 1 <= hour <= 12:
                continue
            is_pm = meridiem.casefold() in _PM_MARKERS
            if is_pm and hour < 12:
                hour += 12
            elif not is_pm and hour == 12:
                hour = 0

        if hour > 23 or minute > 59:
            continue
        result = (hour, minute, date_end)
    return result


# ------------------------------------------------------------------
# Date fragment
# ------------------------------------------------------------------


def _is_letter_or_mark(ch: str) -> bool:
    return ch.isalpha() or unicodedata.category(ch).startswith("M")


def _drop_abbreviation_dots(text: str) -> str:
    out: list[str] = []
    for i, ch in enumerate(text):
        if ch == "." and i > 0 and _is_letter_or_mark(text[i - 1]):
            nxt = text[i + 1] if i + 1 < len(text) else ""
            if not nxt or nxt.isspace() or _is_letter_or_mark(nxt):
                continue
        out.append(ch)
    return "".join(out)


def _is_anchor_word(word: str) -> bool:
    if any(ch.isdigit() for ch in word):
        return True
    return any(month_number(tok) is not None for tok in _tokenize(word))


def _clean_date_part(fragment: str) -> str:
    text = fragment.replace("@", " ")
    text = _drop_abbreviation_dots(text)
    text = _CJK_UNIT_RE.sub(r"\1\2", text)

    words = text.split()
    trimmed = 0
    while words and trimmed < _MAX_NOISE_WORDS and not _is_anchor_word(words[0]):
        words.pop(0)
        trimmed += 1
    trimmed = 0
    while words and trimmed < _MAX_NOISE_WORDS and not _is_anchor_word(words[-1]):
        words.pop()
        trimmed += 1

    return _TRAILING_PUNCT_RE.sub("", " ".join(words))


def _tokenize(text: str) -> list[str]:
    cleaned = "".join(
        ch if ch.isalnum() or unicodedata.category(ch).startswith("M") else " " for ch in text.casefold()
    )
    tokens: list[str] = []
    for chunk in cleaned.split():
        if month_number(chunk) is not None:
            tokens.append(chunk)
            continue
        for piece in _PIECE_RE.findall(chunk):
            mixed = any(c.isdigit() for c in piece) and not piece.isdigit()
            if mixed and month_number(piece) is None:
                tokens.extend(_DIGITS_OR_LETTERS_RE.findall(piece))
            else:
                tokens.append(piece)
    return tokens


def _as_number(token: str) -> int | None:
    if token.isdigit() and len(token) <= 4:
        return int(token)
    return None


def _is_day(token: str) -> bool:
    value = _as_number(token)
    return value is not None and 1 <= value <= 31


def _is_year(token: str) -> bool:
    value = _as_number(token)
    return value is not None and _MIN_YEAR <= value <= _MAX_YEAR


def _parse_tokenized(date_part: str, hour: int, minute: int, steam_now: datetime) -> datetime | None:
    tokens = _tokenize(date_part)
    candidates = [(i, month_number(tok)) for i, tok in enumerate(tokens)]
    candidates = [(i, m) for i, m in candidates if m is not None]
    if not candidates:
        return None

    def has_adjacent_day(index: int) -> bool:
        return (index > 0 and _is_day(tokens[index - 1])) or (
            index + 1 < len(tokens) and _is_day(tokens[index + 1])
        )

    month_index, month = next(((i, m) for i, m in candidates if has_adjacent_day(i)), candidates[0])

    day_index: int | None = None
    for distance in range(1, len(tokens)):
        for index in (month_index - distance, month_index + distance):
            if 0 <= index < len(tokens) and _is_day(tokens[index]):
                day_index = index
                break
        if day_index is not None:
            break
    if day_index is None:
        return None
    day = int(tokens[day_index])

    year: int | None = None
    search_order = list(range(month_index + 1, len(tokens))) + list(range(month_index - 1, -1, -1))
    for index in search_order:
        if index != day_index and _is_year(tokens[index]):
            year = int(tokens[index])
            break

    return _build_local(year, month, day, hour, minute, steam_now)


def _build_local(
    year: int | None,
    month: int,
    day: int,
    hour: int,
    minute: int,
    steam_now: datetime,
) -> datetime | None:
    if year is not None:
        try:
            return datetime(year, month, day, hour, minute)
        except ValueError:
            return None

    try:
        candidate = datetime(steam_now.year, month, day, hour, minute)
    except ValueError:
        return None
    if candidate > steam_now + _FUTURE_TOLERANCE:
        try:
            candidate = candidate.replace(year=steam_now.year - 1)
        except ValueError:
            candidate = candidate.replace(year=steam_now.year - 1, day=28)
    return candidate


# ------------------------------------------------------------------
# Generic numeric fallback
# ------------------------------------------------------------------

_FORMATS: dict[str, tuple[str, ...]] = {
    "dmy": ("%d-%m-%Y", "%d-%m"),
    "mdy": ("%m-%d-%Y", "%m-%d"),
    "ymd": ("%Y-%m-%d", "%m-%d"),
}


def _numeric_fields(date_part: str, substitute_months: bool) -> list[str]:
    fields: list[str] = []
    for token in _tokenize(date_part):
        if token.isdigit():
            fields.append(token)
        elif substitute_months:
            month = month_number(token)
            if month is not None:
                fields.append(str(month))
    return fields


def _parse_generic(
    date_part: str,
    hour: int,
    minute: int,
    culture: str,
    steam_now: datetime,
) -> datetime | None:
    hinted = _DATE_ORDERS.get(culture, "dmy")
    orders = [hinted] + [o for o in ("ymd", "dmy", "mdy") if o != hinted]

    for text, substitute in ((date_part, False), (strip_diacritics(date_part), True)):
        fields = _numeric_fields(text, substitute)
        if len(fields) not in (2, 3):
            continue
        value = "-".join(fields)
        for order in orders:
            for fmt in _FORMATS[order]:
                yearless = "%Y" not in fmt
                if yearless != (len(fields) == 2):
                    continue
                try:
                    parsed = datetime.strptime(
                        f"{value}-{steam_now.year}" if yearless else value,
                        f"{fmt}-%Y" if yearless else fmt,
                    )
                except ValueError:
                    continue
                if not _MIN_YEAR <= parsed.year <= _MAX_YEAR:
                    continue
                logger.debug("Parsed '%s' with numeric format %s", date_part, fmt)
                return _build_local(
                    None if yearless else parsed.year,
                    parsed.month,
                    parsed.day,
                    hour,
                    minute,
                    steam_now,
                )
    return None
