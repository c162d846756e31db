# router_nodes.py
import json
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from config import Settings, get_settings
from errors import AmbiguousIntentError, ClassificationUnavailableError, InvalidRequestError
from prompts import ROUTER_PROMPT
from schemas import (
    ACTIONS,
    DOMAIN_FIELDS,
    DOMAIN_INTENTS,
    ROUTER_ANNOTATIONS,
    TITLE_KEYS,
    Domain,
    LLMRouterDraft,
    RouterRequest,
    RouterResponse,
    RouterState,
    action_of,
    intent_for,
)
from text_rules import (
    MUTATING_ACTIONS,
    TemporalInfo,
    add_minutes,
    clean_message,
    destination_domain,
    detect_action,
    extract_rename,
    extract_status,
    extract_temporal,
    extract_title,
    infer_category,
    is_pronoun,
    mentioned_domains,
    normalize_time,
    same_name,
    second_action_start,
    split_clauses,
)

logger = logging.getLogger("habit_router")

_DOMAIN_LABELS = {
    Domain.HABITS: "a habit",
    Domain.SCHEDULE: "a calendar event",
    Domain.TASKS: "a task",
}

_DOMAIN_SINGULAR = {
    Domain.HABITS: "habit",
    Domain.SCHEDULE: "event",
    Domain.TASKS: "task",
}

_LAST_CREATED_KEYS = {
    Domain.HABITS: "lastCreatedHabitId",
    Domain.SCHEDULE: "lastCreatedEventId",
    Domain.TASKS: "lastCreatedTaskId",
}

# fields that describe *what* changes in an UPDATE, as opposed to which item
_TARGET_KEYS = {"id", "name", "title", "category"} | ROUTER_ANNOTATIONS

_HABIT_SCHEDULE_KEYS = ("frequency", "customdays", "times_per_week", "day", "starttime", "endtime")

_STATUS_VERBS = {"reactivate": "active", "resume": "active", "pause": "paused"}

_LIST_STATUS_RE = re.compile(
    r"\b(?P<status>completed|done|finished|pending|open|unfinished|in\s+progress)\b",
    re.I,
)

MAX_CANDIDATES = 8


# ---------- Helpers ----------


def _find_by_id(items: list, entity_id) -> Optional[Any]:
    for item in items:
        if str(item.id) == str(entity_id):
            return item
    return None


def _aware(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=tz) if value.tzinfo is None else value


def _overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open intervals; a zero-length interval is an instant."""
    if start == end and other_start == other_end:
        return start == other_start
    if start == end:
        return other_start <= start < other_end
    if other_start == other_end:
        return start <= other_start < end
    return start < other_end and other_start < end


def _first_question(text: str) -> str:
    m = re.search(r"[^?]*\?", text)
    return (m.group(0) if m else text).strip()


def _which_question(verb: str, domain: Domain, items: Optional[list]) -> str:
    if not items:
        return f"Which {_DOMAIN_SINGULAR[domain]} should I {verb}?"
    letters = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    shown = items[:MAX_CANDIDATES]
    options = " ".join(f"{letters[i]}) {item.label}" for i, item in enumerate(shown))
    if len(items) > len(shown):
        options += " or another one"
    return f"Which one should I {verb}: {options}?"


def _candidates(domain: Domain, items: Optional[list]) -> List[dict]:
    key = TITLE_KEYS[domain]
    return [{"id": item.id, key: item.label} for item in (items or [])[:MAX_CANDIDATES]]


def _compound_question(domains: List[Domain]) -> str:
    labels = [_DOMAIN_LABELS[d] for d in domains]
    if len(labels) == 2:
        return f"Do you want {labels[0]}, {labels[1]}, or both?"
    return f"Do you want {', '.join(labels[:-1])}, or {labels[-1]}?"


def _clause_for(text: str, domain: Domain) -> str:
    for clause in split_clauses(text):
        if domain in mentioned_domains(clause):
            return clause
    return text


def _multi_action_question(text: str) -> Optional[str]:
    """
    "delete boxing and add running" or "delete boxing and delete reading"
    -> ask which one, never guess. A pronoun ("... and put it on my
    calendar") points back at the same item and is not a second target.
    """
    steps = []
    for clause in split_clauses(text):
        hit = detect_action(clause)
        if hit and hit[0] in MUTATING_ACTIONS:
            steps.append((hit[0], hit[1], extract_title(clause)))

    choices, seen = [], set()
    for action, verb, title in steps:
        if action not in seen:
            seen.add(action)
            choices.append(verb if is_pronoun(title) else f"{verb} {title}")
    if len(choices) > 1:
        return f"Which should I do first: {' or '.join(choices)}?"

    titles = []
    for _, _, title in steps:
        if not is_pronoun(title) and not any(same_name(title, seen_title) for seen_title in titles):
            titles.append(title)
    if len(titles) > 1:
        return f"Which should I {steps[0][1]} first: {' or '.join(titles)}?"
    return None


# ---------- Rule layer ----------


def _temporal_fields(domain: Domain, action: str, temporal: TemporalInfo) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}

    if domain == Domain.HABITS:
        for key in _HABIT_SCHEDULE_KEYS:
            value = getattr(temporal, key)
            if value:
                fields[key] = value

    elif domain == Domain.SCHEDULE:
        if temporal.day:
            fields["day"] = temporal.day
        if action == "LIST":
            return fields
        if temporal.starttime:
            fields["starttime"] = temporal.starttime
        endtime = temporal.endtime
        if temporal.starttime and not endtime and temporal.duration_minutes:
            endtime = add_minutes(temporal.starttime, temporal.duration_minutes)
        if endtime:
            fields["endtime"] = endtime
            # "22:00-01:00" ends on the next day
            if temporal.day and temporal.starttime and endtime < temporal.starttime:
                fields["endday"] = (date.fromisoformat(temporal.day) + timedelta(days=1)).isoformat()
        if temporal.frequency:
            fields["repeat"] = temporal.frequency
        if temporal.customdays:
            fields["customdays"] = temporal.customdays
        if temporal.duration_minutes:
            fields["duration_minutes"] = temporal.duration_minutes

    else:
        if temporal.day:
            fields["due_date"] = temporal.day
        if action == "LIST":
            return fields
        if temporal.starttime:
            fields["duetime"] = temporal.starttime
        if temporal.duration_minutes:
            fields["duration_minutes"] = temporal.duration_minutes

    return fields


def classify_with_rules(request: RouterRequest, now: datetime) -> Dict[str, Any]:
    """
    Deterministic classification: domain, single intent, normalized fields,
    and the first question the message itself forces (compound request,
    conflicting actions, ambiguous date).
    """
    text = clean_message(request.userMessage)
    current = request.currentMenu
    domain = current
    clause = text
    question: Optional[str] = None
    fields: Dict[str, Any] = {}

    destination = destination_domain(text)
    mentioned = mentioned_domains(text)
    compound = len(mentioned) > 1 and len(split_clauses(text)) > 1

    # "add a boxing habit and put it on my calendar": the compound rule
    # outranks the destination phrase of one of its halves
    if compound:
        destination = None

    picked_clause = False
    if destination is not None:
        domain = destination
        clause = _clause_for(text, destination)
    elif len(mentioned) > 1:
        if current in mentioned:
            clause = _clause_for(text, current)
            picked_clause = clause != text
        else:
            question = _compound_question(mentioned)
            fields["options"] = [d.value for d in mentioned]
    elif mentioned:
        domain = mentioned[0]

    hit = detect_action(clause) or detect_action(text)
    action, verb = hit if hit else ("CREATE", None)

    if question is None and not picked_clause:
        question = _multi_action_question(text)

    temporal = extract_temporal(clause, now.date())

    # an explicit time window outranks the menu, unless a domain was named
    if destination is None and not mentioned and temporal.has_window:
        domain = Domain.SCHEDULE

    if question is None and temporal.question:
        question = temporal.question
        if temporal.day_options:
            fields["candidates"] = [{"day": day} for day in temporal.day_options]

    spans = list(temporal.spans)
    if domain != Domain.HABITS:
        spans.extend(temporal.duration_spans)

    key = TITLE_KEYS[domain]
    title: Optional[str] = None

    if action == "UPDATE":
        status, status_span = extract_status(clause)
        if status_span:
            spans.append(status_span)
        if status and domain != Domain.SCHEDULE:
            fields["status"] = status
        if verb in _STATUS_VERBS and domain == Domain.HABITS:
            fields["status"] = _STATUS_VERBS[verb]

        renamed = extract_rename(clause)
        if renamed:
            title, new_title = renamed
            fields["new_name" if domain == Domain.HABITS else "new_title"] = new_title

    if title is None:
        # one item per command: the title comes from the first action clause
        cut = second_action_start(clause)
        if cut is None:
            title = extract_title(clause, spans)
        else:
            title = extract_title(clause[:cut], [span for span in spans if span[1] <= cut])

    if action == "LIST":
        if domain == Domain.TASKS:
            m = _LIST_STATUS_RE.search(clause)
            if m:
                word = m.group("status").lower()
                fields["status"] = "completed" if word in ("completed", "done", "finished") else "pending"
    elif action == "CREATE" and is_pronoun(title):
        mentioned_entity = request.recentContext.lastMentionedEntity if request.recentContext else None
        if mentioned_entity and mentioned_entity.title:
            fields[key] = mentioned_entity.title
    elif title and not is_pronoun(title):
        fields[key] = title

    if action == "CREATE" and domain == Domain.HABITS and fields.get(key):
        fields["category"] = infer_category(fields[key])

    fields.update(_temporal_fields(domain, action, temporal))

    return {
        "domain": domain,
        "intent": intent_for(domain, action),
        "fields": fields,
        "question": question,
    }


# ---------- LLM layer ----------


def _router_llm(settings: Settings):
    """
    JSON-mode chat model for free-text extraction. No client retries:
    retry policy belongs to the caller.
    """
    llm = ChatOpenAI(
        model=settings.openai_model_json,
        temperature=0.0,
        timeout=settings.llm_timeout_seconds,
        max_retries=0,
        api_key=settings.openai_api_key,
    )
    return llm.bind(response_format={"type": "json_object"})


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        text = text.rsplit("```", 1)[0]
    return text.strip()


def classify_with_llm(request: RouterRequest, settings: Settings) -> LLMRouterDraft:
    if not settings.openai_api_key:
        raise ClassificationUnavailableError("OPENAI_API_KEY not configured")

    prompt = ROUTER_PROMPT.format(
        router_input=request.model_dump_json(exclude_none=True, indent=2),
    )

    try:
        resp = _router_llm(settings).invoke(prompt)
    except Exception as exc:
        raise ClassificationUnavailableError(f"LLM classification failed: {exc}") from exc

    content = resp.content if isinstance(resp.content, str) else ""
    try:
        return LLMRouterDraft.model_validate(json.loads(_strip_code_fence(content)))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ClassificationUnavailableError("LLM returned an unreadable router command") from exc


def clamp_llm_draft(draft: LLMRouterDraft, rule_result: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate-and-clamp the model's answer against the rule layer:
    domain is never taken from the model, the intent must belong to that
    domain, unknown fields are dropped and temporal values re-normalized.
    Rule-extracted values win, except titles, which the model reads better.
    """
    domain: Domain = rule_result["domain"]
    intent = rule_result["intent"]

    if draft.intent:
        candidate = draft.intent.strip().upper()
        if candidate in DOMAIN_INTENTS[domain]:
            intent = candidate
        elif action_of(candidate) in ACTIONS:
            intent = intent_for(domain, action_of(candidate))

    allowed = DOMAIN_FIELDS[domain]
    fields = {
        k: v for k, v in draft.fields.items()
        if k in allowed and k != "id" and v not in (None, "", [], {})
    }

    for key in ("starttime", "endtime", "duetime"):
        if key in fields:
            normalized = normalize_time(fields[key])
            if normalized:
                fields[key] = normalized
            else:
                fields.pop(key)

    for key in ("day", "endday", "due_date"):
        if key in fields:
            try:
                fields[key] = date.fromisoformat(str(fields[key])[:10]).isoformat()
            except ValueError:
                fields.pop(key)

    title_key = TITLE_KEYS[domain]
    if isinstance(fields.get(title_key), str):
        fields[title_key] = fields[title_key].strip()

    for key, value in rule_result["fields"].items():
        if key == title_key and fields.get(title_key):
            continue
        fields[key] = value

    question = rule_result["question"]
    if question is None and draft.needs_clarification and (draft.question or "").strip():
        question = _first_question(draft.question)

    return {"domain": domain, "intent": intent, "fields": fields, "question": question}


# ---------- Referents ----------


def resolve_referent(request: RouterRequest, domain: Domain, verb: str = "delete") -> Dict[str, Any]:
    """
    Find what "it" points at, trying in order:

    a) recentContext.lastMentionedEntity (same domain),
    b) the lastCreated...Id of the domain,
    c) the only item of the domain snapshot.

    A referent missing from a supplied snapshot is stale and skipped.
    Raises AmbiguousIntentError with a "Which one ..." question otherwise.
    """
    ctx = request.recentContext
    items = request.domainState.items_for(domain) if request.domainState else None

    def lookup(entity_id):
        if items is None:
            return True, None
        item = _find_by_id(items, entity_id)
        return item is not None, item

    entity = ctx.lastMentionedEntity if ctx else None
    if entity is not None and entity.domain == domain:
        found, item = lookup(entity.id)
        if found:
            return {
                "id": entity.id,
                "title": item.label if item is not None else entity.title,
                "source": "lastMentionedEntity",
            }

    last_id = getattr(ctx, _LAST_CREATED_KEYS[domain]) if ctx else None
    if last_id is not None:
        found, item = lookup(last_id)
        if found:
            return {
                "id": last_id,
                "title": item.label if item is not None else None,
                "source": "lastCreated",
            }

    if items and len(items) == 1:
        return {"id": items[0].id, "title": items[0].label, "source": "onlyItem"}

    raise AmbiguousIntentError(
        _which_question(verb, domain, items),
        candidates=_candidates(domain, items),
    )


# ---------- Pre-checks ----------


def _conflicting_windows(request: RouterRequest, fields: Dict[str, Any], tz: ZoneInfo) -> Optional[List[dict]]:
    state = request.domainState
    if state is None or (state.events is None and state.scheduleBusyWindows is None):
        return None
    if not fields.get("day") or not fields.get("starttime"):
        return None

    day = date.fromisoformat(fields["day"])
    start = datetime.combine(day, time.fromisoformat(fields["starttime"]), tzinfo=tz)
    end = start
    if fields.get("endtime"):
        end_day = date.fromisoformat(fields["endday"]) if fields.get("endday") else day
        end = datetime.combine(end_day, time.fromisoformat(fields["endtime"]), tzinfo=tz)
        if end < start:
            end += timedelta(days=1)

    found = []
    for window in state.scheduleBusyWindows or []:
        w_start, w_end = _aware(window.startISO, tz), _aware(window.endISO, tz)
        if _overlaps(start, end, w_start, w_end):
            found.append({"startISO": w_start.isoformat(), "endISO": w_end.isoformat()})

    for event in state.events or []:
        e_start = _aware(event.startISO, tz)
        e_end = _aware(event.endISO, tz) if event.endISO else e_start
        if _overlaps(start, end, e_start, e_end):
            found.append({
                "id": event.id,
                "title": event.title,
                "startISO": e_start.isoformat(),
                "endISO": e_end.isoformat(),
            })
    return found


def _duplicate_habit_question(habit) -> str:
    if habit.isActive:
        return f"You already have '{habit.name}'. Do you want to change its schedule?"
    return f"You already have '{habit.name}'. Do you want to reactivate it or change its schedule?"


def _missing_field_question(domain: Domain, intent: str, fields: Dict[str, Any]) -> Optional[str]:
    action = action_of(intent)
    title_key = TITLE_KEYS[domain]
    title = fields.get(title_key)

    if action == "CREATE":
        if domain == Domain.HABITS and not title:
            return "What habit would you like to add?"
        if domain == Domain.TASKS and not title:
            return "What task should I add?"
        if domain == Domain.SCHEDULE:
            has_day, has_time = bool(fields.get("day")), bool(fields.get("starttime"))
            if not title:
                if not has_day and not has_time:
                    return "What should I add to your calendar, and when?"
                return "What should I call this event?"
            if not has_day and not has_time:
                return "What date and time should I schedule it?"
            if not has_time:
                return f"What time should I schedule {title}?"
            if not has_day:
                return f"What date should I schedule {title}?"

    if action == "UPDATE":
        changes = [k for k in fields if k not in _TARGET_KEYS]
        if not changes:
            return f"What should I change about {title or 'it'}?"

    return None


# ---------- Nodes ----------


def validate_node(state: RouterState) -> Dict[str, Any]:
    """
    Reject what we refuse to route and pin "now" to the user's timezone.
    """
    req = state.request

    if not (req.userMessage or "").strip():
        raise InvalidRequestError("userMessage must not be empty")

    try:
        tz = ZoneInfo(req.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidRequestError(f"Unknown timezone: {req.timezone!r}") from exc

    try:
        now = datetime.fromisoformat(req.nowISO.strip())
    except ValueError as exc:
        raise InvalidRequestError(f"nowISO is not an ISO-8601 datetime: {req.nowISO!r}") from exc

    now = now.replace(tzinfo=tz) if now.tzinfo is None else now.astimezone(tz)
    return {"now": now}


def classify_node(state: RouterState) -> Dict[str, Any]:
    """
    Rule classification, optionally refined by the LLM.
    The LLM never gets the last word: its draft is clamped by the rules.
    """
    result = classify_with_rules(state.request, state.now)

    settings = get_settings()
    if settings.router_backend == "llm":
        draft = classify_with_llm(state.request, settings)
        result = clamp_llm_draft(draft, result)

    logger.debug(
        "classified %s / %s (question=%r)",
        result["domain"].value,
        result["intent"],
        result["question"],
    )
    return result


def resolve_target_node(state: RouterState) -> Dict[str, Any]:
    """
    DELETE / UPDATE need a concrete target: match an explicit title against
    the snapshot, or fall back to the referent policy for "it".
    """
    action = action_of(state.intent)
    if state.question or action not in ("DELETE", "UPDATE"):
        return {}

    req = state.request
    domain = state.domain
    key = TITLE_KEYS[domain]
    verb = action.lower()
    fields = dict(state.fields)
    items = req.domainState.items_for(domain) if req.domainState else None

    if "id" in fields:
        if items is None or _find_by_id(items, fields["id"]) is not None:
            return {}
        fields.pop("id")

    title = fields.get(key)
    if title and not is_pronoun(title):
        if items:
            matches = [item for item in items if same_name(item.label, title)]
            if len(matches) == 1:
                fields["id"] = matches[0].id
                fields[key] = matches[0].label
                fields["target_source"] = "title"
            elif len(matches) > 1:
                fields["candidates"] = _candidates(domain, matches)
                return {"fields": fields, "question": _which_question(verb, domain, matches)}
        return {"fields": fields}

    fields.pop(key, None)
    try:
        target = resolve_referent(req, domain, verb)
    except AmbiguousIntentError as exc:
        fields["candidates"] = exc.candidates
        logger.debug("no referent for %s: %s", state.intent, exc.question)
        return {"fields": fields, "question": exc.question}

    fields["id"] = target["id"]
    if target["title"]:
        fields[key] = target["title"]
    fields["target_source"] = target["source"]
    return {"fields": fields}


def precheck_node(state: RouterState) -> Dict[str, Any]:
    """
    Duplicate habits, schedule conflicts and required fields.
    Conflicts are only annotated; deciding them is the executor's job.
    """
    if state.question:
        return {}

    req = state.request
    domain = state.domain
    intent = state.intent
    fields = dict(state.fields)
    question: Optional[str] = None

    habits = req.domainState.habits if req.domainState else None
    if intent == "CREATE_HABIT" and habits and fields.get("name"):
        existing = next((h for h in habits if same_name(h.name, fields["name"])), None)
        if existing is not None:
            intent = "UPDATE_HABIT"
            fields.pop("category", None)
            fields["id"] = existing.id
            fields["name"] = existing.name
            fields["target_source"] = "duplicate"
            if not any(k in fields for k in _HABIT_SCHEDULE_KEYS):
                question = _duplicate_habit_question(existing)
            elif not existing.isActive:
                fields.setdefault("status", "active")
            logger.debug("CREATE_HABIT %r rerouted to UPDATE_HABIT", existing.name)

    if intent == "CREATE_EVENT":
        windows = _conflicting_windows(req, fields, ZoneInfo(req.timezone))
        if windows is not None:
            fields["conflictCheckRequested"] = True
            fields["conflictingWindows"] = windows

    if question is None:
        question = _missing_field_question(domain, intent, fields)

    return {"intent": intent, "fields": fields, "question": question}


def finalize_node(state: RouterState) -> Dict[str, Any]:
    question = (state.question or "").strip()
    response = RouterResponse(
        domain=state.domain,
        intent=state.intent,
        fields=state.fields,
        needs_clarification=bool(question),
        question=question,
    )
    return {"response": response}
