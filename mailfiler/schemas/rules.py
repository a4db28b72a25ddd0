"""Schemas for the sender/domain/keyword rule engine.

A rule set maps *patterns* to category labels. Sender patterns come in two
shapes, an exact address or a domain wildcard written with a leading ``@``;
keyword rules live in their own mapping and match on subject lines.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

DOMAIN_SIGIL = "@"
KEYWORD_PREFIX = "keyword:"


# --- Patterns ---


class PatternKind(StrEnum):
    """Shape of a sender pattern."""

    EXACT = "exact"
    DOMAIN = "domain"


class SenderPattern(BaseModel):
    """A Rule Set key: an exact sender address or a ``@domain`` wildcard."""

    model_config = ConfigDict(frozen=True)

    kind: PatternKind
    value: str  # the key as stored, e.g. "alice@co.com" or "@co.com"

    @classmethod
    def parse(cls, raw: str) -> "SenderPattern":
        kind = PatternKind.DOMAIN if raw.startswith(DOMAIN_SIGIL) else PatternKind.EXACT
        return cls(kind=kind, value=raw)

    @property
    def is_domain(self) -> bool:
        return self.kind == PatternKind.DOMAIN

    @property
    def domain(self) -> str:
        """The ``@domain`` this pattern belongs to ("" for an address without one)."""
        if self.is_domain:
            return self.value
        if DOMAIN_SIGIL not in self.value:
            return ""
        return DOMAIN_SIGIL + self.value.rpartition(DOMAIN_SIGIL)[2]

    def __str__(self) -> str:
        return self.value


class KeywordPattern(BaseModel):
    """A subject-line keyword rule key."""

    model_config = ConfigDict(frozen=True)

    keyword: str

    @property
    def rule_key(self) -> str:
        return KEYWORD_PREFIX + self.keyword


# --- Matching ---


class RuleMatch(BaseModel):
    """The single rule that applies to a message."""

    label: str
    rule_key: str  # exact address, "@domain", or "keyword:<kw>"


class MatchRecord(BaseModel):
    """One dry-run result row."""

    sender: str
    subject: str
    label: str
    rule_key: str


# --- Consolidation ---


class OpportunityKind(StrEnum):
    """Kind of consolidation proposal."""

    REDUNDANT = "redundant"
    DOMAIN_MERGE = "domain-merge"


class ConsolidationOpportunity(BaseModel):
    """A proposed change to the Rule Set. Computed on demand, never persisted."""

    kind: OpportunityKind
    rules_to_remove: list[str]
    rule_to_add: str | None = None
    label: str
    description: str = ""


# --- Listings and summaries ---


class RuleEntry(BaseModel):
    """A sender rule as returned by search."""

    pattern: str
    label: str


class KeywordEntry(BaseModel):
    """A keyword rule as returned by listing."""

    keyword: str
    label: str


class RuleStats(BaseModel):
    """Counts over the current rule documents."""

    total: int = 0
    exact: int = 0
    domain: int = 0
    exclusions: int = 0
    keywords: int = 0


class DiscoveryResult(BaseModel):
    """Outcome of a discovery run."""

    categories_scanned: int = 0
    categories_skipped: int = 0
    new_rules: int = 0
    total_rules: int = 0
    timed_out: bool = False


class ImportResult(BaseModel):
    """Structured outcome of a backup import. Import never raises."""

    success: bool
    message: str
    count: int = 0


# --- Triggers ---


class ScheduledJob(BaseModel):
    """A recurring job registered with the scheduler."""

    handler_name: str
    interval_seconds: int = Field(gt=0)
    last_run: datetime | None = None


class TriggerStatus(BaseModel):
    """Whether the sweep and discovery jobs are scheduled."""

    cleanup: bool = False
    discovery: bool = False
