"""
Clarify Entity Resolvers

Turn a name fragment typed in chat ("workspace 5", "meeting notes") into
concrete workspace / note / entry records. When more than one record
matches, the matches become the options of a clarifier.

Persistence is out of scope here: SnapshotResolver works on an in-memory
list of records handed over by the host (typically the rows it already
loaded for the sidebar). Database-backed resolvers implement the same
EntityResolver protocol.

Usage:
    from clarify.resolvers import ResolutionContext, ResolverRecord, SnapshotResolver

    resolver = SnapshotResolver([ResolverRecord("ws-1", "Research")], kind="workspace")
    result = await resolver.resolve("research", ResolutionContext())
    if result.status == "multiple":
        options = options_from_matches(result.matches, kind="workspace")
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from clarify.models import ClarificationOption

logger = logging.getLogger("clarify.resolvers")


STATUS_FOUND = "found"
STATUS_NOT_FOUND = "not_found"
STATUS_MULTIPLE = "multiple"

_DEFAULT_ALIASES = frozenset({"dashboard", "home"})
_MAX_MATCHES = 10


@dataclass(frozen=True)
class ResolverRecord:
    """A named record that can be resolved.

    Attributes:
        id:         Record id
        name:       Display name
        entry_id:   Owning entry, if the record is scoped to one
        entry_name: Display name of the owning entry
        is_default: Whether this is the entry's default (dashboard) record
        updated_at: Last update, epoch seconds; newer sorts first
    """
    id: str
    name: str
    entry_id: str | None = None
    entry_name: str | None = None
    is_default: bool = False
    updated_at: float = 0.0


@dataclass(frozen=True)
class ResolutionContext:
    user_id: str | None = None
    current_entry_id: str | None = None


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of a resolve call.

    `match` is set for found; `matches` holds every candidate (for
    multiple, or for reference when an exact match won over partial ones).
    """
    status: str
    match: ResolverRecord | None = None
    matches: tuple[ResolverRecord, ...] = field(default_factory=tuple)
    message: str = ""


class EntityResolver(Protocol):
    async def resolve(self, name_fragment: str, context: ResolutionContext) -> ResolutionResult: ...


# ---------------------------------------------------------------------------
# In-memory resolver
# ---------------------------------------------------------------------------

class SnapshotResolver:
    """Resolve names against a snapshot of records.

    Lookup rules:
        - case-insensitive substring match, newest first, at most 10
        - records of the current entry only, when the context names one
        - "workspace 5" also searches "5"; if both have exact matches the
          result is multiple
        - "dashboard" / "home" match the default record
        - an exact name match wins over partial matches

    Args:
        records: Records to resolve against.
        kind:    Record kind used in messages ("workspace", "note", "entry").
    """

    def __init__(self, records: Sequence[ResolverRecord], kind: str = "workspace"):
        self.records = tuple(records)
        self.kind = kind

    def _search(self, term: str, is_default_alias: bool, context: ResolutionContext) -> list[ResolverRecord]:
        pool = [
            r for r in self.records
            if context.current_entry_id is None or r.entry_id == context.current_entry_id
        ]
        hits = [r for r in pool if term in r.name.lower() or (is_default_alias and r.is_default)]
        hits.sort(key=lambda r: (r.name.lower() != term, -r.updated_at))
        return hits[:_MAX_MATCHES]

    async def resolve(self, name_fragment: str, context: ResolutionContext) -> ResolutionResult:
        term = name_fragment.strip().lower()
        if not term:
            return ResolutionResult(STATUS_NOT_FOUND, message=f"No {self.kind} name given")

        prefix = f"{self.kind} "
        alt_term = term[len(prefix):].strip() if term.startswith(prefix) else ""
        is_default_alias = term in _DEFAULT_ALIASES

        matches = self._search(term, is_default_alias, context)
        if alt_term:
            seen = {m.id for m in matches}
            for m in self._search(alt_term, False, context):
                if m.id not in seen:
                    matches.append(m)
                    seen.add(m.id)

        if not matches:
            return ResolutionResult(
                STATUS_NOT_FOUND, message=f'No {self.kind} found matching "{name_fragment}"',
            )

        exact = next(
            (m for m in matches if m.name.lower() == term or (is_default_alias and m.is_default)),
            None,
        )
        alt_exact = next((m for m in matches if m.name.lower() == alt_term), None) if alt_term else None

        if exact and alt_exact and exact.id != alt_exact.id:
            return ResolutionResult(
                STATUS_MULTIPLE,
                matches=(exact, alt_exact),
                message=f'Did you mean "{exact.name}" or "{alt_exact.name}"?',
            )
        if exact:
            return ResolutionResult(STATUS_FOUND, match=exact, matches=tuple(matches))
        if len(matches) == 1:
            return ResolutionResult(STATUS_FOUND, match=matches[0], matches=tuple(matches))

        logger.debug("%d %s records match %r", len(matches), self.kind, name_fragment)
        return ResolutionResult(
            STATUS_MULTIPLE,
            matches=tuple(matches),
            message=f'Multiple {self.kind}s match "{name_fragment}". Please select one.',
        )

    async def resolve_recent(self, context: ResolutionContext) -> ResolutionResult:
        """Most recently updated record, scoped to the current entry when set."""
        pool = [
            r for r in self.records
            if context.current_entry_id is None or r.entry_id == context.current_entry_id
        ]
        if not pool:
            return ResolutionResult(STATUS_NOT_FOUND, message=f"No recent {self.kind} found")
        newest = max(pool, key=lambda r: r.updated_at)
        return ResolutionResult(STATUS_FOUND, match=newest, matches=(newest,))


def options_from_matches(
    matches: Sequence[ResolverRecord],
    kind: str = "workspace",
) -> tuple[ClarificationOption, ...]:
    """Clarifier options for a multiple-match result, ids kept from the records."""
    return tuple(
        ClarificationOption(
            id=m.id,
            label=m.name,
            type=kind,
            sublabel=m.entry_name,
            data={"entry_id": m.entry_id},
        )
        for m in matches
    )
