import logging
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from sqlgateway.core.errors import ResolutionError
from sqlgateway.core.gateway.introspect import CatalogReader
from sqlgateway.core.schemas import (
    RelationDescriptor,
    RelationKind,
    Resolution,
    SchemaMode,
    TablePattern,
)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# RESOLVER MODULE
# Purpose: decide which tables and views a schema request may see.
# Why: an explicit allow-list is never widened, yet an unconfigured server
# still shows something useful (the catalog fallback).
#
# Policy, in order:
#   1. views matching the configured name pattern
#   2. tables from the caller list or the server allow-list
#   3. only if nothing was found and no caller entry was refused:
#      every user object outside excluded schemas
# -----------------------------------------------------------------------------

_KIND_NAMES = {"tables": RelationKind.TABLE, "views": RelationKind.VIEW}


class ResolverPolicy(BaseModel):
    """Server-side configuration the resolver evaluates against."""

    view_pattern: str = "vw%"
    table_allowlist: List[str] = []
    include_kinds: List[RelationKind] = [RelationKind.TABLE, RelationKind.VIEW]
    excluded_schemas: List[str] = []

    @classmethod
    def from_settings(cls, settings) -> "ResolverPolicy":
        kinds = [_KIND_NAMES[name] for name in settings.include_types if name in _KIND_NAMES]
        return cls(
            view_pattern=settings.SCHEMA_WHITELIST,
            table_allowlist=settings.object_allowlist,
            include_kinds=kinds,
            excluded_schemas=settings.exclude_schemas,
        )


def _strip_brackets(part: str) -> str:
    part = part.strip()
    if part.startswith("[") and part.endswith("]"):
        return part[1:-1].strip()
    return part


def parse_allowlist_entry(entry: str) -> TablePattern:
    """
    Parse "schema.name" or "schema.*" into a TablePattern.

    Raises:
        ResolutionError: the entry is not a two-part name, or uses a
            wildcard anywhere but as the whole table part.
    """
    parts = [_strip_brackets(part) for part in str(entry).strip().split(".")]
    if len(parts) != 2 or not all(parts):
        raise ResolutionError(f"Allow-list entry '{entry}' is not schema.name or schema.*")

    schema_name, name = parts
    if any(mark in schema_name for mark in "*%"):
        raise ResolutionError(f"Allow-list entry '{entry}' has a wildcard schema")
    if name == "*":
        return TablePattern(schema_name=schema_name)
    if any(mark in name for mark in "*%"):
        raise ResolutionError(f"Allow-list entry '{entry}' has a partial wildcard")
    return TablePattern(schema_name=schema_name, name=name)


def is_covered(pattern: TablePattern, allowed: Sequence[TablePattern]) -> bool:
    """True when a server allow-list already permits everything the pattern names."""
    for permitted in allowed:
        if permitted.schema_name.lower() != pattern.schema_name.lower():
            continue
        if permitted.is_wildcard:
            return True
        if not pattern.is_wildcard and permitted.name.lower() == pattern.name.lower():
            return True
    return False


class ResolutionContext:
    """Mutable state for one resolve call. Never shared between requests."""

    def __init__(
        self,
        catalog: CatalogReader,
        mode: SchemaMode,
        policy: ResolverPolicy,
        requested_tables: Optional[Sequence[str]],
    ):
        self.catalog = catalog
        self.mode = mode
        self.policy = policy
        self.requested_tables = list(requested_tables or [])
        self.found: Dict[Tuple[str, str], RelationDescriptor] = {}
        self.skipped: List[str] = []
        # Caller entries refused as outside the configured allow-list
        self.refused: List[str] = []
        self.steps: List[str] = []
        self.via_catalog_fallback = False

    def add(self, relations: Sequence[RelationDescriptor]) -> int:
        added = 0
        for relation in relations:
            if relation.identity not in self.found:
                self.found[relation.identity] = relation
                added += 1
        return added

    def skip(self, entry: str, error: ResolutionError) -> None:
        logger.warning("Skipping allow-list entry: %s", error)
        self.skipped.append(entry)


class ResolutionStep:
    name = "step"

    def applies(self, ctx: ResolutionContext) -> bool:
        raise NotImplementedError

    async def run(self, ctx: ResolutionContext) -> int:
        raise NotImplementedError


class ViewPatternStep(ResolutionStep):
    name = "views"

    def applies(self, ctx: ResolutionContext) -> bool:
        return ctx.mode.includes_views

    async def run(self, ctx: ResolutionContext) -> int:
        return ctx.add(await ctx.catalog.list_views(ctx.policy.view_pattern))


class AllowListStep(ResolutionStep):
    name = "allow-list"

    def applies(self, ctx: ResolutionContext) -> bool:
        return ctx.mode.includes_tables and bool(
            ctx.requested_tables or ctx.policy.table_allowlist
        )

    async def run(self, ctx: ResolutionContext) -> int:
        server_patterns = self._parse(ctx, ctx.policy.table_allowlist)

        if not ctx.requested_tables:
            patterns = server_patterns
        else:
            patterns = self._parse(ctx, ctx.requested_tables)
            # A caller list can narrow a configured allow-list, never widen it
            if ctx.policy.table_allowlist:
                patterns = self._covered(ctx, patterns, server_patterns)

        if not patterns:
            return 0
        return ctx.add(await ctx.catalog.find_tables(patterns))

    @staticmethod
    def _parse(ctx: ResolutionContext, entries: Sequence[str]) -> List[TablePattern]:
        patterns = []
        for entry in entries:
            try:
                patterns.append(parse_allowlist_entry(entry))
            except ResolutionError as error:
                ctx.skip(entry, error)
        return patterns

    @staticmethod
    def _covered(
        ctx: ResolutionContext, patterns: List[TablePattern], allowed: List[TablePattern]
    ) -> List[TablePattern]:
        kept = []
        for pattern in patterns:
            if is_covered(pattern, allowed):
                kept.append(pattern)
            else:
                ctx.refused.append(str(pattern))
                ctx.skip(
                    str(pattern),
                    ResolutionError(f"'{pattern}' is outside the configured allow-list"),
                )
        return kept


class CatalogFallbackStep(ResolutionStep):
    name = "catalog-fallback"

    def applies(self, ctx: ResolutionContext) -> bool:
        # A refused caller list must not come back through the full scan
        return not ctx.found and not ctx.refused

    async def run(self, ctx: ResolutionContext) -> int:
        ctx.via_catalog_fallback = True
        relations = await ctx.catalog.scan_relations(
            ctx.policy.include_kinds, ctx.policy.excluded_schemas
        )
        return ctx.add(relations)


RESOLUTION_POLICY: Tuple[ResolutionStep, ...] = (
    ViewPatternStep(),
    AllowListStep(),
    CatalogFallbackStep(),
)


async def resolve_relations(
    catalog: CatalogReader,
    mode: SchemaMode,
    policy: ResolverPolicy,
    requested_tables: Optional[Sequence[str]] = None,
    steps: Sequence[ResolutionStep] = RESOLUTION_POLICY,
) -> Resolution:
    """
    Evaluate the resolution policy for one request.

    Args:
        catalog: Introspection collaborator.
        mode: Which relation kinds the caller asked for.
        policy: Server configuration (view pattern, allow-list, fallback filters).
        requested_tables: Optional caller-supplied schema-qualified names.
        steps: Ordered policy, overridable so single steps can be tested.

    Returns:
        Resolution with de-duplicated relations in discovery order.
    """
    ctx = ResolutionContext(catalog, mode, policy, requested_tables)

    for step in steps:
        if not step.applies(ctx):
            continue
        added = await step.run(ctx)
        ctx.steps.append(f"{step.name}:{added}")

    return Resolution(
        relations=list(ctx.found.values()),
        via_catalog_fallback=ctx.via_catalog_fallback,
        skipped_entries=ctx.skipped,
        steps=ctx.steps,
    )
