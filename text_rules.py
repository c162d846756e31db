# text_rules.py
"""
Deterministic reading of a single user message.

Everything here is pure: no clock, no I/O. Relative dates are resolved
against the `today` the caller passes in.

Ambiguities that need the user (two plausible dates, an unreadable date)
are raised as AmbiguousIntentError by the date helpers; extract_temporal
turns them into a question so the router can ask it.
"""

import re
from datetime import date, timedelta
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from errors import AmbiguousIntentError
from schemas import Domain

Span = Tuple[int, int]


# ---------- Message cleanup ----------

_DASHES = str.maketrans({"–": "-", "—": "-", "‑": "-", "−": "-"})


def clean_message(text: str) -> str:
    """Trim, unify dashes and collapse whitespace."""
    return re.sub(r"\s+", " ", (text or "").translate(_DASHES)).strip()


# ---------- Domain markers ----------

_NOUN_DOMAIN = (
    (re.compile(r"^habit", re.I), Domain.HABITS),
    (re.compile(r"^(?:calendar|schedule)", re.I), Domain.SCHEDULE),
    (re.compile(r"^(?:task|to-?do)", re.I), Domain.TASKS),
)

_DESTINATION_RE = re.compile(
    r"\b(?:to|on|in|into|onto)\s+(?:my|the|our)\s+"
    r"(?P<noun>calendar|schedule|habits?(?:\s+list)?|tasks?(?:\s+list)?|to-?dos?(?:\s+list)?)\b",
    re.I,
)

_DOMAIN_MARKERS = (
    (Domain.HABITS, re.compile(r"\bhabits?\b", re.I)),
    (
        Domain.SCHEDULE,
        re.compile(
            r"\b(?:calendar|events?|appointments?|meetings?)\b"
            r"|(?<!its )(?<!their )\bschedule\b",
            re.I,
        ),
    ),
    (Domain.TASKS, re.compile(r"\b(?:tasks?|to-?dos?)\b", re.I)),
)


def destination_domain(text: str) -> Optional[Domain]:
    """
    "add this to my schedule" style phrases. Returns a domain only when
    every destination phrase in the message points at the same one.
    """
    found = set()
    for m in _DESTINATION_RE.finditer(text):
        noun = m.group("noun")
        for pattern, domain in _NOUN_DOMAIN:
            if pattern.match(noun):
                found.add(domain)
    if len(found) == 1:
        return found.pop()
    return None


# "slides for the meeting", "read about habits": the noun belongs to the title
_TITLE_OBJECT_RE = re.compile(
    r"\b(?:for|about|with|after|before|during|at|regarding)\s+"
    r"(?!(?:my|our)\b)(?:[\w'-]+\s+){0,2}$",
    re.I,
)


def in_title(text: str, position: int) -> bool:
    """True when the word at `position` is the object of a preposition inside a title."""
    return bool(_TITLE_OBJECT_RE.search(text[:position]))


def mentioned_domains(text: str) -> List[Domain]:
    """Domains named explicitly in the message, in order of appearance."""
    hits = []
    for domain, pattern in _DOMAIN_MARKERS:
        for m in pattern.finditer(text):
            if not in_title(text, m.start()):
                hits.append((m.start(), domain))
                break
    return [domain for _, domain in sorted(hits, key=lambda hit: hit[0])]


# ---------- Actions ----------

_ACTION_PATTERNS = (
    (
        "DELETE",
        re.compile(
            r"\b(?:delete|remove|drop|discard|cancel|erase|undo|stop\s+tracking|get\s+rid\s+of)\b",
            re.I,
        ),
    ),
    (
        "UPDATE",
        re.compile(
            r"\b(?:edit|update|change|tweak|adjust|rename|move|reschedule|modify"
            r"|reactivate|pause|resume|mark)\b",
            re.I,
        ),
    ),
    (
        "LIST",
        re.compile(
            r"\b(?:list|show|display|view|see)\b"
            r"|\bwhat(?:'s|\s+is|\s+are)\b|\bdo\s+i\s+have\b",
            re.I,
        ),
    ),
    (
        "CREATE",
        re.compile(
            r"\b(?:add|create|start|begin|make|book|plan|track|build|schedule|remind|log|put)\b"
            r"|\bset\s+up\b",
            re.I,
        ),
    ),
)

MUTATING_ACTIONS = ("CREATE", "DELETE", "UPDATE")


def detect_action(text: str) -> Optional[Tuple[str, str]]:
    """
    The action whose verb appears first, with the verb as written.
    None means no verb at all (callers treat that as CREATE).
    """
    best = None
    for action, pattern in _ACTION_PATTERNS:
        m = pattern.search(text)
        if m and (best is None or m.start() < best[0]):
            best = (m.start(), action, m.group(0).lower())
    if best is None:
        return None
    return best[1], best[2]


_CLAUSE_SPLIT_RE = re.compile(
    r"\s*(?:,\s*)?(?:\band\s+then\b|\bthen\b|\band\b|\balso\b|\bplus\b|&|;)\s*",
    re.I,
)


def split_clauses(text: str) -> List[str]:
    return [part for part in _CLAUSE_SPLIT_RE.split(text) if part and part.strip()]


def second_action_start(text: str) -> Optional[int]:
    """
    Offset where a second clause with its own verb begins, e.g. the
    " and delete" in "delete boxing and delete reading". None if there is none.
    """
    separators = list(_CLAUSE_SPLIT_RE.finditer(text))
    for i, sep in enumerate(separators):
        end = separators[i + 1].start() if i + 1 < len(separators) else len(text)
        if detect_action(text[:sep.start()]) and detect_action(text[sep.end():end]):
            return sep.start()
    return None


# ---------- Times ----------

_MERIDIEM = r"(?:[ap]\.?m\.?)"
_CLOCK = rf"(?:[01]?\d|2[0-3])(?::[0-5]\d)?\s*{_MERIDIEM}?"

_TIME_WINDOW_RE = re.compile(
    rf"(?:\bfrom\s+)?(?<![\d:])(?P<start>{_CLOCK})\s*(?:-|\bto\b|\buntil\b|\btill\b)\s*"
    rf"(?P<end>{_CLOCK})(?![\w:])",
    re.I,
)

_SINGLE_TIME_RE = re.compile(
    rf"(?:\b(?:at|by|@)\s*)?(?<![\d:])"
    rf"(?P<time>(?:[01]?\d|2[0-3]):[0-5]\d\s*{_MERIDIEM}?|(?:1[0-2]|0?[1-9])\s*{_MERIDIEM})"
    rf"(?![\w:])",
    re.I,
)

_AT_HOUR_RE = re.compile(
    r"\b(?:at|by)\s+(?P<time>[01]?\d|2[0-3])\b"
    r"(?!\s*(?:times?|days?|weeks?|minutes?|mins?|hours?|hrs?|pages?|%)|[:.]\d)",
    re.I,
)

_NAMED_TIMES = {"noon": "12:00", "midday": "12:00", "midnight": "00:00"}
_NAMED_TIME_RE = re.compile(r"\b(?:at\s+)?(?P<time>noon|midday|midnight)\b", re.I)

_MERIDIEM_RE = re.compile(rf"{_MERIDIEM}\s*$", re.I)


def normalize_time(raw) -> Optional[str]:
    """
    "3:30 PM" -> "15:30", "9am" -> "09:00", "7" -> "07:00".
    Returns None for anything that is not a valid clock time.
    """
    if raw is None:
        return None
    value = str(raw).strip().lower().replace(".", "")
    if value in _NAMED_TIMES:
        return _NAMED_TIMES[value]

    m = re.fullmatch(r"(\d{1,2})(?::(\d{2}))?(?::\d{2})?\s*(am|pm)?", value)
    if not m:
        return None

    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    meridiem = m.group(3)

    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    elif hour > 23:
        return None
    return f"{hour:02d}:{minute:02d}"


def bare_hour(raw: str) -> Optional[str]:
    """
    "at 7" -> "07:00", "by 5" -> "17:00". Without am/pm, 1-6 are read as
    afternoon hours; 0 and 7-23 are taken as written.
    """
    hour = int(raw)
    if 1 <= hour <= 6:
        hour += 12
    return normalize_time(str(hour))


def _meridiem_of(raw: str) -> Optional[str]:
    m = _MERIDIEM_RE.search(raw)
    if not m:
        return None
    return "pm" if m.group(0).lower().startswith("p") else "am"


def _with_meridiem(raw: str, meridiem: str) -> Optional[str]:
    bare = _MERIDIEM_RE.sub("", raw).strip()
    return normalize_time(f"{bare}{meridiem}")


def normalize_window(start_raw: str, end_raw: str) -> Optional[Tuple[str, str]]:
    """
    Normalize a start/end pair. A missing am/pm is borrowed from the other
    side ("3-4pm"). Bare hours on both sides ("3-4") are not a time window.
    """
    start_mer = _meridiem_of(start_raw)
    end_mer = _meridiem_of(end_raw)
    if not (":" in start_raw or ":" in end_raw or start_mer or end_mer):
        return None

    start = normalize_time(start_raw)
    end = normalize_time(end_raw)

    if end_mer and not start_mer:
        borrowed = _with_meridiem(start_raw, end_mer)
        if borrowed and end and borrowed > end:
            borrowed = _with_meridiem(start_raw, "am" if end_mer == "pm" else "pm")
        start = borrowed or start
    elif start_mer and not end_mer:
        borrowed = _with_meridiem(end_raw, start_mer)
        if borrowed and start and borrowed < start:
            borrowed = _with_meridiem(end_raw, "pm" if start_mer == "am" else "am")
        end = borrowed or end

    if start is None or end is None:
        return None
    return start, end


# ---------- Dates ----------

_FULL_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_WEEKDAY_INDEX = {name: i for i, name in enumerate(_FULL_WEEKDAYS)}
_WEEKDAY_INDEX.update({
    "mon": 0, "tue": 1, "tues": 1, "wed": 2, "thu": 3, "thur": 3, "thurs": 3,
    "fri": 4, "sat": 5, "sun": 6,
})
_ANY_WEEKDAY = "|".join(sorted(_WEEKDAY_INDEX, key=len, reverse=True))
_FULL_WEEKDAY = "|".join(_FULL_WEEKDAYS)

# abbreviations ("sun", "sat") only count with a modifier in front
_WEEKDAY_RE = re.compile(
    rf"\b(?:(?P<mod>this|next|coming|on)\s+(?P<wd>{_ANY_WEEKDAY})|(?P<bare>{_FULL_WEEKDAY}))\b",
    re.I,
)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH = (
    r"(?P<month>jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
    r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_MONTH_DAY_RE = re.compile(
    rf"\b(?:on\s+)?{_MONTH}\.?\s+(?P<day>\d{{1,2}})(?:st|nd|rd|th)?\b(?![:\d])(?:,?\s*(?P<year>\d{{4}}))?",
    re.I,
)
_DAY_MONTH_RE = re.compile(
    rf"\b(?:on\s+)?(?:the\s+)?(?<![\d:])(?P<day>\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH}\b"
    rf"(?:,?\s*(?P<year>\d{{4}}))?",
    re.I,
)
_ISO_DATE_RE = re.compile(r"\b(?:on\s+)?(?P<y>\d{4})-(?P<m>\d{1,2})-(?P<d>\d{1,2})\b")

_RELATIVE_DAYS = (
    (re.compile(r"\b(?:the\s+)?day\s+after\s+tomorrow\b", re.I), 2),
    (re.compile(r"\b(?:tomorrow|tmrw|tmr)\b", re.I), 1),
    (re.compile(r"\b(?:today|tonight|this\s+(?:morning|afternoon|evening))\b", re.I), 0),
)
_IN_DAYS_RE = re.compile(r"\bin\s+(?P<n>\d+|a|one|two|three)\s+(?P<unit>days?|weeks?)\b", re.I)

_SMALL_NUMBERS = {"a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "once": 1, "twice": 2}


def _fmt_day(value: date) -> str:
    return f"{value:%A}, {value:%B} {value.day}"


def resolve_weekday(today: date, weekday: int, modifier: Optional[str]) -> date:
    """
    Resolve a weekday name against today.

    - "this X": the occurrence in the next 7 days, today included.
    - "X" / "on X": the next occurrence; asks when X is today.
    - "next X": asks when X is today or still ahead this week, since
      people use it for both the coming one and the one a week later.
    """
    ahead = (weekday - today.weekday()) % 7
    modifier = (modifier or "").lower()

    if modifier == "this":
        return today + timedelta(days=ahead)
    if modifier == "coming":
        return today + timedelta(days=ahead or 7)

    if modifier == "next":
        if weekday < today.weekday():
            return today + timedelta(days=ahead)
        first = today + timedelta(days=ahead or 7)
        second = first + timedelta(days=7)
        raise AmbiguousIntentError(
            f"Do you mean {_fmt_day(first)} or {_fmt_day(second)}?",
            candidates=[{"day": first.isoformat()}, {"day": second.isoformat()}],
        )

    if ahead == 0:
        later = today + timedelta(days=7)
        raise AmbiguousIntentError(
            f"Do you mean today ({_fmt_day(today)}) or {_fmt_day(later)}?",
            candidates=[{"day": today.isoformat()}, {"day": later.isoformat()}],
        )
    return today + timedelta(days=ahead)


def _month_date(today: date, month: str, day: str, year: Optional[str]) -> date:
    month_num = _MONTHS[month.lower()[:3]]
    try:
        if year:
            return date(int(year), month_num, int(day))
        value = date(today.year, month_num, int(day))
        if value < today:
            value = date(today.year + 1, month_num, int(day))
        return value
    except ValueError:
        raise AmbiguousIntentError("Which date did you mean?")


# ---------- Frequency & duration ----------

_EVERY_DAYS_RE = re.compile(
    rf"\bevery\s+(?P<days>(?:{_ANY_WEEKDAY})(?:\s*(?:,|and|&)\s*(?:{_ANY_WEEKDAY}))*)\b",
    re.I,
)
_PLURAL_DAYS_RE = re.compile(
    rf"\b(?:on\s+)?(?P<days>(?:{_FULL_WEEKDAY})s(?:\s*(?:,|and|&)\s*(?:{_FULL_WEEKDAY})s)*)\b",
    re.I,
)
_TIMES_PER_WEEK_RE = re.compile(
    r"\b(?P<n>\d+|once|twice)\s*(?:x|times?)?\s*(?:a|per|each)\s+week\b",
    re.I,
)
_FREQUENCIES = (
    (re.compile(r"\b(?:every\s+weekday|(?:on\s+)?weekdays)\b", re.I), "weekdays"),
    (re.compile(r"\b(?:every\s+weekend|(?:on\s+)?weekends)\b", re.I), "weekends"),
    (
        re.compile(
            r"\b(?:daily|every\s*day|each\s+day|every\s+(?:morning|afternoon|evening|night))\b",
            re.I,
        ),
        "daily",
    ),
    (re.compile(r"\b(?:weekly|every\s+week)\b", re.I), "weekly"),
    (re.compile(r"\b(?:monthly|every\s+month)\b", re.I), "monthly"),
)

_DURATION_RE = re.compile(
    r"\b(?:for\s+)?(?P<n>\d+(?:\.\d+)?|an?|one|two|three|half\s+an?)\s*"
    r"(?P<unit>minutes?|mins?|hours?|hrs?)\b",
    re.I,
)


def _duration_minutes(amount: str, unit: str) -> Optional[int]:
    amount = amount.lower()
    if amount.startswith("half"):
        value = 0.5
    elif amount in _SMALL_NUMBERS:
        value = float(_SMALL_NUMBERS[amount])
    else:
        value = float(amount)
    minutes = value * 60 if unit.lower().startswith(("h", "hr")) else value
    minutes = int(round(minutes))
    return minutes or None


def _weekday_names(raw: str) -> List[str]:
    names = []
    for token in re.findall(_ANY_WEEKDAY, raw, re.I):
        name = _FULL_WEEKDAYS[_WEEKDAY_INDEX[token.lower()]].capitalize()
        if name not in names:
            names.append(name)
    return names


# ---------- Temporal extraction ----------


class TemporalInfo(BaseModel):
    day: Optional[str] = None
    starttime: Optional[str] = None
    endtime: Optional[str] = None
    has_window: bool = False
    frequency: Optional[str] = None
    customdays: List[str] = Field(default_factory=list)
    times_per_week: Optional[int] = None
    duration_minutes: Optional[int] = None

    question: Optional[str] = None
    day_options: List[str] = Field(default_factory=list)

    # character ranges consumed by the fields above
    spans: List[Span] = Field(default_factory=list)
    duration_spans: List[Span] = Field(default_factory=list)

    @property
    def has_schedule_change(self) -> bool:
        return bool(self.day or self.starttime or self.frequency or self.customdays)


class _Scanner:
    """Blank out matched spans so later patterns do not see them again."""

    def __init__(self, text: str):
        self.work = text
        self.spans: List[Span] = []

    def take(self, pattern, store: Optional[List[Span]] = None, accept=None):
        for m in pattern.finditer(self.work):
            if accept is not None and not accept(m):
                continue
            self.work = self.work[:m.start()] + " " * (m.end() - m.start()) + self.work[m.end():]
            (self.spans if store is None else store).append((m.start(), m.end()))
            return m
        return None


def _read_day(scan: _Scanner, today: date) -> Optional[date]:
    m = scan.take(_ISO_DATE_RE)
    if m:
        try:
            return date(int(m.group("y")), int(m.group("m")), int(m.group("d")))
        except ValueError:
            raise AmbiguousIntentError("Which date did you mean?")

    m = scan.take(_MONTH_DAY_RE) or scan.take(_DAY_MONTH_RE)
    if m:
        return _month_date(today, m.group("month"), m.group("day"), m.group("year"))

    for pattern, offset in _RELATIVE_DAYS:
        if scan.take(pattern):
            return today + timedelta(days=offset)

    m = scan.take(_IN_DAYS_RE)
    if m:
        amount = m.group("n").lower()
        count = _SMALL_NUMBERS.get(amount) or int(amount)
        days = count * 7 if m.group("unit").lower().startswith("week") else count
        return today + timedelta(days=days)

    m = scan.take(_WEEKDAY_RE)
    if m:
        token = (m.group("wd") or m.group("bare")).lower()
        return resolve_weekday(today, _WEEKDAY_INDEX[token], m.group("mod"))
    return None


def extract_temporal(text: str, today: date) -> TemporalInfo:
    """
    Pull dates, times, frequency and duration out of the message.

    Never raises: an ambiguous date is reported through `question` (and
    `day_options`) so the rest of the message can still be read.
    """
    info = TemporalInfo()
    scan = _Scanner(text)

    # frequency first, so "every monday" is not read as a date
    m = scan.take(_EVERY_DAYS_RE) or scan.take(_PLURAL_DAYS_RE)
    if m:
        info.customdays = _weekday_names(m.group("days"))
        info.frequency = "daily" if len(info.customdays) == 7 else "custom"

    m = scan.take(_TIMES_PER_WEEK_RE)
    if m:
        amount = m.group("n").lower()
        info.times_per_week = _SMALL_NUMBERS.get(amount) or int(amount)
        info.frequency = info.frequency or "weekly"

    for pattern, frequency in _FREQUENCIES:
        if scan.take(pattern):
            info.frequency = info.frequency or frequency

    try:
        day = _read_day(scan, today)
    except AmbiguousIntentError as exc:
        info.question = exc.question
        info.day_options = [c["day"] for c in exc.candidates if "day" in c]
    else:
        info.day = day.isoformat() if day else None

    # times
    m = scan.take(
        _TIME_WINDOW_RE,
        accept=lambda match: normalize_window(match.group("start"), match.group("end")) is not None,
    )
    if m:
        info.starttime, info.endtime = normalize_window(m.group("start"), m.group("end"))
        info.has_window = True
    else:
        m = scan.take(_SINGLE_TIME_RE) or scan.take(_NAMED_TIME_RE)
        if m:
            info.starttime = normalize_time(m.group("time"))
        else:
            m = scan.take(_AT_HOUR_RE)
            if m:
                info.starttime = bare_hour(m.group("time"))

    m = scan.take(_DURATION_RE, store=info.duration_spans)
    if m:
        info.duration_minutes = _duration_minutes(m.group("n"), m.group("unit"))

    info.spans = scan.spans
    return info


def add_minutes(hhmm: str, minutes: int) -> Optional[str]:
    """Clock arithmetic inside one day; None if it runs past midnight."""
    hour, minute = int(hhmm[:2]), int(hhmm[3:])
    total = hour * 60 + minute + minutes
    if total >= 24 * 60:
        return None
    return f"{total // 60:02d}:{total % 60:02d}"


# ---------- Status / rename ----------

_STATUS_RE = re.compile(
    r"\b(?:as\s+)?(?P<status>done|complete|completed|finished|pending|undone|not\s+done"
    r"|incomplete|in\s+progress)\s*[.!]?\s*$",
    re.I,
)
_STATUS_VALUES = {
    "done": "completed",
    "complete": "completed",
    "completed": "completed",
    "finished": "completed",
    "pending": "pending",
    "undone": "pending",
    "not done": "pending",
    "incomplete": "pending",
    "in progress": "in_progress",
}

_RENAME_RE = re.compile(r"\brename\s+(?P<old>.+?)\s+(?:to|as|into)\s+(?P<new>.+?)\s*[.!?]*$", re.I)


def extract_status(text: str) -> Tuple[Optional[str], Optional[Span]]:
    m = _STATUS_RE.search(text)
    if not m:
        return None, None
    status = re.sub(r"\s+", " ", m.group("status").lower())
    return _STATUS_VALUES[status], (m.start(), m.end())


def extract_rename(text: str) -> Optional[Tuple[str, str]]:
    m = _RENAME_RE.search(text)
    if not m:
        return None
    old = extract_title(m.group("old"))
    new = extract_title(m.group("new"))
    if not new:
        return None
    return old, new


# ---------- Titles ----------

_DOUBLE_QUOTED_RE = re.compile(r"[\"“](?P<t>[^\"”]+)[\"”]")
_SINGLE_QUOTED_RE = re.compile(r"(?:^|(?<=\s))['‘](?P<t>[^'’]+)['’](?=\s|$|[.,!?])")
_CALLED_RE = re.compile(
    r"\b(?:called|named|titled)\s+(?P<t>.+?)"
    r"(?=\s+(?:at|on|from|for|every|today|tomorrow|tonight|by|due|and)\b|[.,!?]|$)",
    re.I,
)

_DOMAIN_NOUN_RE = re.compile(
    r"\b(?:(?:to|on|in|into|onto|from|for)\s+)?(?:(?:my|the|our|a|an|new)\s+)*"
    r"(?P<noun>calendar|schedule|habits?|events?|tasks?|to-?dos?)(?:\s+list)?\b",
    re.I,
)

_VERB_PHRASES = (
    ("get", "rid", "of"),
    ("stop", "tracking"),
    ("set", "up"),
    ("remind", "me", "to"),
    ("remind", "me"),
)

_FILLER_PHRASES = (
    ("i", "would", "like"),
    ("do", "i", "have"),
)

_FILLER_WORDS = {
    "please", "pls", "hey", "ok", "okay", "so", "can", "could", "would", "will",
    "you", "i", "i'd", "id", "i'll", "want", "wanna", "need", "like", "to",
    "let's", "lets", "me", "help", "also", "just", "about",
    "what", "what's", "whats", "is", "are",
    "all", "a", "an", "the", "my", "our", "another", "new",
}

# only the first verb is dropped: "remind me to cancel gym" keeps "cancel gym"
_VERB_WORDS = {
    "add", "create", "start", "begin", "make", "book", "plan", "track", "build",
    "schedule", "log", "put", "delete", "remove", "drop", "discard", "cancel", "erase", "undo",
    "edit", "update", "change", "tweak", "adjust", "rename", "move", "reschedule",
    "modify", "reactivate", "pause", "resume", "mark",
    "list", "show", "display", "view", "see",
}

_TRAIL_WORDS = {
    "please", "for", "me", "at", "on", "from", "to", "the", "a", "an", "my", "and",
    "then", "by", "in", "due", "as", "every", "each", "of", "with", "until", "till",
    "starting", "now", "again", "do", "i", "have",
}

PRONOUNS = {
    "it", "its", "that", "this", "them", "those", "these", "one", "that one",
    "this one", "last one", "the last one", "the one", "same", "the same",
}

_TOKEN_EDGE = ".,!?;:()[]{}\"“”‘’"


def _blank(text: str, spans: List[Span]) -> str:
    for start, end in spans:
        text = text[:start] + " " * (end - start) + text[end:]
    return text


def _capitalize(title: str) -> str:
    title = title.strip()
    return title[:1].upper() + title[1:] if title else title


def _strip_lead(tokens: List[str]) -> List[str]:
    seen_verb = False
    while tokens:
        lowered = [t.lower() for t in tokens]
        filler = next((p for p in _FILLER_PHRASES if tuple(lowered[:len(p)]) == p), None)
        verb = next((p for p in _VERB_PHRASES if tuple(lowered[:len(p)]) == p), None)
        if filler:
            tokens = tokens[len(filler):]
        elif verb and not seen_verb:
            tokens = tokens[len(verb):]
            seen_verb = True
        elif lowered[0] in _FILLER_WORDS:
            tokens = tokens[1:]
        elif lowered[0] in _VERB_WORDS and not seen_verb:
            tokens = tokens[1:]
            seen_verb = True
        else:
            break
    return tokens


def explicit_title(text: str) -> Optional[str]:
    for pattern in (_DOUBLE_QUOTED_RE, _SINGLE_QUOTED_RE, _CALLED_RE):
        m = pattern.search(text)
        if m and m.group("t").strip():
            return _capitalize(m.group("t"))
    return None


def extract_title(text: str, spans: Optional[List[Span]] = None) -> str:
    """
    Whatever is left of the message once verbs, domain nouns, temporal
    phrases and filler are gone. "add a boxing habit" -> "Boxing".
    """
    explicit = explicit_title(text)
    if explicit:
        return explicit

    work = _blank(text, spans or [])
    work = _DOMAIN_NOUN_RE.sub(
        lambda m: m.group(0) if in_title(work, m.start("noun")) else " ",
        work,
    )

    tokens = [t.strip(_TOKEN_EDGE) for t in work.split()]
    tokens = [t for t in tokens if t]
    tokens = _strip_lead(tokens)
    while tokens and tokens[-1].lower() in _TRAIL_WORDS:
        tokens.pop()

    return _capitalize(" ".join(tokens))


def is_pronoun(title: Optional[str]) -> bool:
    return not title or title.strip().lower() in PRONOUNS


def same_name(left: str, right: str) -> bool:
    return (left or "").strip().casefold() == (right or "").strip().casefold()


# ---------- Habit categories ----------

HABIT_CATEGORIES = (
    ("Fitness", ("run", "walk", "gym", "exercise", "workout", "lift", "boxing", "yoga", "pilates", "swim", "stretch")),
    ("Wellness", ("meditat", "mindful", "breath", "journal", "gratitude", "therapy", "stress")),
    ("Productivity", ("study", "read", "learn", "practice", "write", "organi", "plan")),
    ("Nutrition", ("water", "hydrat", "meal", "cook", "vegetable", "protein", "diet")),
    ("Sleep", ("sleep", "bedtime", "wind down", "nap")),
)


def infer_category(text: str) -> str:
    lower = (text or "").lower()
    for category, keywords in HABIT_CATEGORIES:
        if any(re.search(rf"\b{re.escape(keyword)}", lower) for keyword in keywords):
            return category
    return "General"
