import pytest

from errors import AmbiguousIntentError, InvalidRequestError
from graph_app import route
from router_nodes import resolve_referent
from schemas import DOMAIN_INTENTS, Domain

HABITS = [{"id": 1, "name": "Boxing"}, {"id": 2, "name": "Reading"}]


# ---------- Core scenarios ----------


def test_habit_noun_on_habits_menu_creates_habit(make_request) -> None:
    result = route(make_request("boxing habit"))

    assert result.domain == Domain.HABITS
    assert result.intent == "CREATE_HABIT"
    assert result.fields["name"] == "Boxing"
    assert result.fields["category"] == "Fitness"
    assert result.needs_clarification is False
    assert result.question == ""


def test_time_window_switches_habits_menu_to_schedule(make_request) -> None:
    result = route(make_request("boxing today 15:30–16:30"))

    assert result.domain == Domain.SCHEDULE
    assert result.intent == "CREATE_EVENT"
    assert result.fields["title"] == "Boxing"
    assert result.fields["day"] == "2026-10-21"
    assert result.fields["starttime"] == "15:30"
    assert result.fields["endtime"] == "16:30"
    assert result.needs_clarification is False


def test_delete_it_with_two_habits_asks_which_one(make_request) -> None:
    result = route(make_request("delete it", domainState={"habits": HABITS}))

    assert result.domain == Domain.HABITS
    assert result.intent == "DELETE_HABIT"
    assert result.needs_clarification is True
    assert result.question == "Which one should I delete: A) Boxing B) Reading?"
    assert result.fields["candidates"] == [{"id": 1, "name": "Boxing"}, {"id": 2, "name": "Reading"}]
    assert "id" not in result.fields


def test_existing_habit_is_never_created_twice(make_request) -> None:
    result = route(make_request("add boxing habit", domainState={"habits": [{"id": 7, "name": "boxing"}]}))

    assert result.intent == "UPDATE_HABIT"
    assert result.fields["id"] == 7
    assert result.needs_clarification is True
    assert result.question == "You already have 'boxing'. Do you want to change its schedule?"


def test_existing_inactive_habit_with_new_schedule_is_reactivated(make_request) -> None:
    habits = [{"id": 7, "name": "Boxing", "isActive": False}]
    result = route(make_request("add boxing habit every monday", domainState={"habits": habits}))

    assert result.intent == "UPDATE_HABIT"
    assert result.needs_clarification is False
    assert result.fields["id"] == 7
    assert result.fields["status"] == "active"
    assert result.fields["customdays"] == ["Monday"]
    assert "category" not in result.fields


def test_destination_phrase_overrides_current_menu(make_request) -> None:
    result = route(make_request("add event to my schedule"))

    assert result.domain == Domain.SCHEDULE
    assert result.intent == "CREATE_EVENT"
    assert result.needs_clarification is True
    assert result.question == "What should I add to your calendar, and when?"


def test_compound_request_keeps_habit_half_over_destination(make_request) -> None:
    result = route(make_request("add a boxing habit and put it on my calendar"))

    assert result.domain == Domain.HABITS
    assert result.intent == "CREATE_HABIT"
    assert result.fields["name"] == "Boxing"
    assert result.fields["category"] == "Fitness"
    assert result.needs_clarification is False


def test_compound_request_with_destination_off_menu_asks(make_request) -> None:
    result = route(make_request("add a boxing habit and put it on my calendar", menu="TASKS"))

    assert result.needs_clarification is True
    assert result.question == "Do you want a habit, a calendar event, or both?"
    assert result.fields["options"] == ["HABITS", "SCHEDULE"]


@pytest.mark.parametrize(
    "message, title",
    [
        ("prepare slides for the meeting", "Prepare slides for the meeting"),
        ("read about habits", "Read about habits"),
    ],
)
def test_domain_noun_inside_title_keeps_current_menu(make_request, message, title) -> None:
    result = route(make_request(message, menu="TASKS"))

    assert result.domain == Domain.TASKS
    assert result.intent == "CREATE_TASK"
    assert result.fields["title"] == title
    assert result.needs_clarification is False


def test_bare_deadline_hour_is_afternoon(make_request) -> None:
    result = route(make_request("buy milk by 5", menu="TASKS"))

    assert result.intent == "CREATE_TASK"
    assert result.fields["title"] == "Buy milk"
    assert result.fields["duetime"] == "17:00"


# ---------- Contract ----------


@pytest.mark.parametrize(
    "menu, message",
    [
        ("HABITS", "boxing habit"),
        ("HABITS", "delete it"),
        ("SCHEDULE", "dentist next friday at 3pm"),
        ("TASKS", "show my completed tasks"),
        ("TASKS", "add a reading habit and a calendar event"),
        ("HABITS", "delete boxing and add running"),
        ("SCHEDULE", "what's on my calendar tomorrow"),
        ("TASKS", "mark it as done"),
    ],
)
def test_every_response_has_one_valid_intent(make_request, menu, message) -> None:
    result = route(make_request(message, menu=menu))

    assert result.intent in DOMAIN_INTENTS[result.domain]
    assert result.needs_clarification == bool(result.question.strip())
    assert result.question.count("?") <= 1


def test_route_accepts_a_plain_dict() -> None:
    result = route({
        "currentMenu": "TASKS",
        "userMessage": "add pay rent tomorrow at 9am",
        "timezone": "Asia/Yerevan",
        "nowISO": "2026-10-21T11:05:00+04:00",
    })

    assert result.domain == Domain.TASKS
    assert result.intent == "CREATE_TASK"
    assert result.fields["title"] == "Pay rent"
    assert result.fields["due_date"] == "2026-10-22"
    assert result.fields["duetime"] == "09:00"


# ---------- Clarification ----------


def test_ambiguous_next_weekday_asks_with_both_dates(make_request) -> None:
    result = route(make_request("dentist next friday at 3pm", menu="SCHEDULE"))

    assert result.intent == "CREATE_EVENT"
    assert result.question == "Do you mean Friday, October 23 or Friday, October 30?"
    assert result.fields["candidates"] == [{"day": "2026-10-23"}, {"day": "2026-10-30"}]
    assert result.fields["starttime"] == "15:00"


def test_compound_request_off_menu_asks_habit_or_event(make_request) -> None:
    result = route(make_request("add a reading habit and a calendar event", menu="TASKS"))

    assert result.needs_clarification is True
    assert result.question == "Do you want a habit, a calendar event, or both?"
    assert result.fields["options"] == ["HABITS", "SCHEDULE"]


def test_compound_request_prefers_the_current_menu(make_request) -> None:
    result = route(make_request("add a reading habit and a calendar event", menu="HABITS"))

    assert result.domain == Domain.HABITS
    assert result.intent == "CREATE_HABIT"
    assert result.fields["name"] == "Reading"
    assert result.needs_clarification is False


def test_conflicting_actions_ask_which_first(make_request) -> None:
    result = route(make_request("delete boxing and add running"))

    assert result.needs_clarification is True
    assert result.question == "Which should I do first: delete Boxing or add Running?"


def test_same_action_on_two_targets_asks_which_first(make_request) -> None:
    result = route(make_request("delete boxing and delete reading", domainState={"habits": HABITS}))

    assert result.intent == "DELETE_HABIT"
    assert result.needs_clarification is True
    assert result.question == "Which should I delete first: Boxing or Reading?"
    assert result.fields["name"] == "Boxing"


def test_impossible_date_has_no_candidates(make_request) -> None:
    result = route(make_request("party on feb 30", menu="SCHEDULE"))

    assert result.question == "Which date did you mean?"
    assert "candidates" not in result.fields


def test_event_without_time_asks_for_it(make_request) -> None:
    result = route(make_request("add dentist tomorrow", menu="SCHEDULE"))

    assert result.intent == "CREATE_EVENT"
    assert result.fields["day"] == "2026-10-22"
    assert result.question == "What time should I schedule Dentist?"


def test_task_without_title_asks_for_it(make_request) -> None:
    result = route(make_request("add a task", menu="TASKS"))

    assert result.intent == "CREATE_TASK"
    assert result.question == "What task should I add?"


# ---------- Targets & referents ----------


def test_explicit_title_resolves_against_snapshot(make_request) -> None:
    result = route(make_request("delete boxing", domainState={"habits": HABITS}))

    assert result.intent == "DELETE_HABIT"
    assert result.fields["id"] == 1
    assert result.fields["name"] == "Boxing"
    assert result.fields["target_source"] == "title"
    assert result.needs_clarification is False


def test_last_mentioned_entity_comes_first(make_request) -> None:
    request = make_request(
        "delete it",
        menu="TASKS",
        recentContext={
            "lastCreatedTaskId": 9,
            "lastMentionedEntity": {"domain": "TASKS", "id": 5, "title": "Buy milk"},
        },
        domainState={"tasks": [{"id": 5, "title": "Buy milk"}, {"id": 9, "title": "Pay rent"}]},
    )

    result = route(request)

    assert result.intent == "DELETE_TASK"
    assert result.fields["id"] == 5
    assert result.fields["title"] == "Buy milk"
    assert result.fields["target_source"] == "lastMentionedEntity"


def test_last_created_is_used_when_mention_is_another_domain(make_request) -> None:
    request = make_request(
        "delete it",
        menu="TASKS",
        recentContext={
            "lastCreatedTaskId": 9,
            "lastMentionedEntity": {"domain": "HABITS", "id": 1, "title": "Boxing"},
        },
    )

    target = resolve_referent(request, Domain.TASKS)

    assert target == {"id": 9, "title": None, "source": "lastCreated"}


def test_only_item_is_the_last_resort(make_request) -> None:
    request = make_request("remove it", menu="TASKS", domainState={"tasks": [{"id": 3, "title": "Pay rent"}]})

    target = resolve_referent(request, Domain.TASKS)

    assert target == {"id": 3, "title": "Pay rent", "source": "onlyItem"}


def test_stale_referent_is_skipped(make_request) -> None:
    request = make_request(
        "delete it",
        menu="TASKS",
        recentContext={"lastMentionedEntity": {"domain": "TASKS", "id": 42, "title": "Old"}},
        domainState={"tasks": [{"id": 3, "title": "Pay rent"}]},
    )

    result = route(request)

    assert result.fields["id"] == 3
    assert result.fields["target_source"] == "onlyItem"


def test_stale_referent_with_nothing_left_asks(make_request) -> None:
    request = make_request(
        "delete it",
        menu="TASKS",
        recentContext={"lastCreatedTaskId": 42},
        domainState={"tasks": []},
    )

    with pytest.raises(AmbiguousIntentError) as excinfo:
        resolve_referent(request, Domain.TASKS)
    assert excinfo.value.question == "Which task should I delete?"

    result = route(request)
    assert result.needs_clarification is True
    assert result.question == "Which task should I delete?"


def test_pronoun_create_borrows_last_mentioned_title(make_request) -> None:
    request = make_request(
        "add it to my calendar tomorrow at 10am",
        recentContext={"lastMentionedEntity": {"domain": "HABITS", "id": 1, "name": "Boxing"}},
    )

    result = route(request)

    assert result.domain == Domain.SCHEDULE
    assert result.intent == "CREATE_EVENT"
    assert result.fields["title"] == "Boxing"
    assert result.fields["day"] == "2026-10-22"
    assert result.fields["starttime"] == "10:00"


# ---------- Updates & lists ----------


def test_mark_task_done(make_request) -> None:
    request = make_request("mark pay rent as done", menu="TASKS", domainState={"tasks": [{"id": 4, "title": "Pay rent"}]})

    result = route(request)

    assert result.intent == "UPDATE_TASK"
    assert result.fields["id"] == 4
    assert result.fields["status"] == "completed"
    assert result.needs_clarification is False


def test_rename_habit(make_request) -> None:
    request = make_request("rename reading to evening reading", domainState={"habits": HABITS})

    result = route(request)

    assert result.intent == "UPDATE_HABIT"
    assert result.fields["id"] == 2
    assert result.fields["name"] == "Reading"
    assert result.fields["new_name"] == "Evening reading"


def test_list_tasks_with_status_filter(make_request) -> None:
    result = route(make_request("show my completed tasks", menu="TASKS"))

    assert result.intent == "LIST_TASKS"
    assert result.fields == {"status": "completed"}


def test_list_calendar_for_a_day(make_request) -> None:
    result = route(make_request("what's on my calendar tomorrow"))

    assert result.domain == Domain.SCHEDULE
    assert result.intent == "LIST_EVENTS"
    assert result.fields == {"day": "2026-10-22"}


# ---------- Conflicts ----------


def test_overlapping_event_is_annotated_not_refused(make_request) -> None:
    events = [{
        "id": "e1",
        "title": "Dinner",
        "startISO": "2026-10-22T18:30:00+04:00",
        "endISO": "2026-10-22T20:00:00+04:00",
    }]

    result = route(make_request("gym tomorrow 18:00-19:00", menu="SCHEDULE", domainState={"events": events}))

    assert result.intent == "CREATE_EVENT"
    assert result.needs_clarification is False
    assert result.fields["conflictCheckRequested"] is True
    assert [w["id"] for w in result.fields["conflictingWindows"]] == ["e1"]


def test_touching_windows_do_not_conflict(make_request) -> None:
    busy = [{"startISO": "2026-10-22T17:00:00+04:00", "endISO": "2026-10-22T18:00:00+04:00"}]

    result = route(make_request("gym tomorrow 18:00-19:00", menu="SCHEDULE", domainState={"scheduleBusyWindows": busy}))

    assert result.fields["conflictCheckRequested"] is True
    assert result.fields["conflictingWindows"] == []


def test_overnight_event_ends_next_day(make_request) -> None:
    result = route(make_request("party tonight 22:00-01:00", menu="SCHEDULE"))

    assert result.intent == "CREATE_EVENT"
    assert result.fields["title"] == "Party"
    assert result.fields["day"] == "2026-10-21"
    assert result.fields["starttime"] == "22:00"
    assert result.fields["endtime"] == "01:00"
    assert result.fields["endday"] == "2026-10-22"


def test_overnight_event_conflicts_after_midnight(make_request) -> None:
    busy = [{"startISO": "2026-10-22T00:30:00+04:00", "endISO": "2026-10-22T01:30:00+04:00"}]

    result = route(make_request("party tonight 22:00-01:00", menu="SCHEDULE", domainState={"scheduleBusyWindows": busy}))

    assert result.fields["conflictCheckRequested"] is True
    assert len(result.fields["conflictingWindows"]) == 1


def test_no_snapshot_no_conflict_check(make_request) -> None:
    result = route(make_request("gym tomorrow 18:00-19:00", menu="SCHEDULE"))

    assert "conflictCheckRequested" not in result.fields


# ---------- Invalid input ----------


@pytest.mark.parametrize(
    "overrides",
    [
        {"userMessage": "   "},
        {"timezone": "Mars/Olympus"},
        {"nowISO": "yesterday-ish"},
    ],
)
def test_invalid_requests_are_rejected(make_request, overrides) -> None:
    request = make_request("boxing habit").model_copy(update=overrides)

    with pytest.raises(InvalidRequestError):
        route(request)


def test_missing_required_field_is_rejected() -> None:
    with pytest.raises(InvalidRequestError):
        route({"userMessage": "boxing habit", "nowISO": "2026-10-21T11:05:00+04:00"})


@pytest.mark.parametrize("menu", ["HABITS", "SCHEDULE", "TASKS"])
def test_no_marker_keeps_current_menu_and_is_repeatable(make_request, menu) -> None:
    first = route(make_request("add call mom tomorrow at 10am", menu=menu))
    second = route(make_request("add call mom tomorrow at 10am", menu=menu))

    assert first.domain == Domain(menu)
    assert (first.domain, first.intent) == (second.domain, second.intent)
    assert first.fields == second.fields
