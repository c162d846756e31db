# schemas.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from config import get_settings

EntityId = Union[int, str]


class Domain(str, Enum):
    HABITS = "HABITS"
    SCHEDULE = "SCHEDULE"
    TASKS = "TASKS"


# singular / plural nouns used to spell intents, e.g. CREATE_EVENT, LIST_EVENTS
DOMAIN_NOUNS = {
    Domain.HABITS: ("HABIT", "HABITS"),
    Domain.SCHEDULE: ("EVENT", "EVENTS"),
    Domain.TASKS: ("TASK", "TASKS"),
}

ACTIONS = ("CREATE", "DELETE", "UPDATE", "LIST")


def intent_for(domain: Domain, action: str) -> str:
    singular, plural = DOMAIN_NOUNS[domain]
    return f"{action}_{plural if action == 'LIST' else singular}"


def action_of(intent: str) -> str:
    return intent.split("_", 1)[0]


DOMAIN_INTENTS = {
    domain: tuple(intent_for(domain, action) for action in ACTIONS)
    for domain in Domain
}

# executors read the habit label from "name", everything else from "title"
TITLE_KEYS = {
    Domain.HABITS: "name",
    Domain.SCHEDULE: "title",
    Domain.TASKS: "title",
}

ROUTER_ANNOTATIONS = {
    "conflictCheckRequested",
    "conflictingWindows",
    "candidates",
    "target_source",
    "options",
}

DOMAIN_FIELDS = {
    Domain.HABITS: {
        "id", "name", "new_name", "category", "frequency", "customdays",
        "times_per_week", "day", "starttime", "endtime", "status",
    },
    Domain.SCHEDULE: {
        "id", "title", "new_title", "day", "starttime", "endtime", "endday", "repeat",
        "customdays", "duration_minutes",
    },
    Domain.TASKS: {
        "id", "title", "new_title", "due_date", "duetime", "duration_minutes",
        "status",
    },
}


# ---------- Context snapshots ----------


class MentionedEntity(BaseModel):
    domain: Domain
    id: EntityId
    title: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("title", "name"),
    )


class RecentContext(BaseModel):
    lastCreatedHabitId: Optional[EntityId] = None
    lastCreatedEventId: Optional[EntityId] = None
    lastCreatedTaskId: Optional[EntityId] = None
    lastMentionedEntity: Optional[MentionedEntity] = None


class HabitSnapshot(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: EntityId
    name: str = Field(validation_alias=AliasChoices("name", "title"))
    frequency: Optional[str] = None
    scheduleInfo: Optional[Any] = None
    isActive: bool = True

    @property
    def label(self) -> str:
        return self.name


class EventSnapshot(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: EntityId
    title: str
    startISO: datetime
    endISO: Optional[datetime] = None

    @property
    def label(self) -> str:
        return self.title


class TaskSnapshot(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: EntityId
    title: str = Field(validation_alias=AliasChoices("title", "name"))
    dueISO: Optional[datetime] = None
    status: Optional[str] = None

    @property
    def label(self) -> str:
        return self.title


class BusyWindow(BaseModel):
    startISO: datetime
    endISO: datetime


class DomainState(BaseModel):
    """
    Read-only snapshots supplied by the caller.

    A list left out (None) is unknown; an empty list is known to be empty.
    """
    habits: Optional[List[HabitSnapshot]] = None
    events: Optional[List[EventSnapshot]] = None
    tasks: Optional[List[TaskSnapshot]] = None
    scheduleBusyWindows: Optional[List[BusyWindow]] = None

    def items_for(self, domain: Domain) -> Optional[list]:
        if domain == Domain.HABITS:
            return self.habits
        if domain == Domain.SCHEDULE:
            return self.events
        return self.tasks


# ---------- Router contract ----------


class RouterRequest(BaseModel):
    """
    One user message plus everything the router may look at.
    """
    currentMenu: Domain
    userMessage: str
    timezone: str = Field(default_factory=lambda: get_settings().default_timezone)
    nowISO: str
    recentContext: Optional[RecentContext] = None
    domainState: Optional[DomainState] = None


class RouterResponse(BaseModel):
    """
    Exactly one command for exactly one executor.

    needs_clarification and a non-empty question always travel together.
    """
    domain: Domain
    intent: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    needs_clarification: bool = False
    question: str = ""

    @model_validator(mode="after")
    def _check_contract(self):
        if self.intent not in DOMAIN_INTENTS[self.domain]:
            raise ValueError(
                f"intent {self.intent!r} is not valid for domain {self.domain.value}"
            )
        has_question = bool(self.question and self.question.strip())
        if self.needs_clarification != has_question:
            raise ValueError("needs_clarification must be set iff question is non-empty")
        return self


class LLMRouterDraft(BaseModel):
    """
    Whatever the model returned, before clamping.
    Loose on purpose: every value is re-checked by the rule layer.
    """
    domain: Optional[str] = None
    intent: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    needs_clarification: bool = False
    question: Optional[str] = None


# ---------- Graph state ----------


class RouterState(BaseModel):
    request: RouterRequest
    now: Optional[datetime] = None

    domain: Optional[Domain] = None
    intent: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    question: Optional[str] = None

    response: Optional[RouterResponse] = None
