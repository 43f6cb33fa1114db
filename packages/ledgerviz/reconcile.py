"""Merge per-source batches into one canonical, ordered transaction sequence.

Two steps, both single-threaded and run after every source has been fully
normalized:

1. Category resolution. Each transaction's category is looked up by its
   case-folded spelling. Explicitly configured aliases win; otherwise the
   first spelling seen in load order becomes the canonical display name for
   that key.
2. Cross-source deduplication. Transactions with equal ``(date, amount,
   canonical category)`` coming from *different* sources are collapsed.
   Repeats inside one source are kept: two identical coffees on one day are
   two real purchases.

The result is sorted by date with ties kept in load order (source order, then
row order).
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import TypeAlias

from .errors import AliasConflict
from .logging_setup import get_logger
from .models import (
    CategoryAliasTable,
    DuplicateRecord,
    RejectedRow,
    SourceBatch,
    Transaction,
    category_key,
)
from .normalizers import normalize_category

_logger = get_logger("ledgerviz.reconcile")

_DedupKey: TypeAlias = tuple[date, Decimal, str]


@dataclass(frozen=True, slots=True)
class Reconciliation:
    transactions: tuple[Transaction, ...]
    aliases: CategoryAliasTable
    duplicates: tuple[DuplicateRecord, ...] = ()
    rejected: tuple[RejectedRow, ...] = ()
    rows_seen: int = 0


def build_alias_table(
    aliases: Mapping[str, str] | Iterable[tuple[str, str]] = (),
) -> CategoryAliasTable:
    """Validate explicit aliases and freeze them into a table.

    Raises :class:`AliasConflict` when one raw spelling is mapped to two
    different canonical names, and when a canonical name is itself aliased to
    something else (chains would make resolution order-dependent). Canonical
    names always resolve to themselves.
    """

    pairs = aliases.items() if isinstance(aliases, Mapping) else aliases
    explicit: dict[str, str] = {}
    for raw, canonical in pairs:
        raw_n = normalize_category(raw)
        canonical_n = normalize_category(canonical)
        if raw_n is None or canonical_n is None:
            raise ValueError(f"category aliases must be non-empty: {raw!r} -> {canonical!r}")
        key = category_key(raw_n)
        existing = explicit.get(key)
        if existing is not None and existing != canonical_n:
            raise AliasConflict(raw_n, existing, canonical_n)
        explicit[key] = canonical_n

    entries = dict(explicit)
    for canonical in list(explicit.values()):
        ckey = category_key(canonical)
        target = entries.get(ckey)
        if target is None:
            entries[ckey] = canonical
        elif target != canonical:
            raise AliasConflict(canonical, canonical, target)

    return CategoryAliasTable(
        entries=MappingProxyType(entries),
        explicit_keys=frozenset(entries),
        version=len(entries),
    )


def _resolve_categories(
    batches: Sequence[SourceBatch], aliases: CategoryAliasTable
) -> tuple[list[Transaction], CategoryAliasTable]:
    entries = dict(aliases.entries)
    version = aliases.version
    resolved: list[Transaction] = []
    for batch in batches:
        for tx in batch.transactions:
            key = category_key(tx.category)
            canonical = entries.get(key)
            if canonical is None:
                entries[key] = canonical = tx.category
                version += 1
            resolved.append(tx if canonical == tx.category else replace(tx, category=canonical))
    table = CategoryAliasTable(
        entries=MappingProxyType(entries),
        explicit_keys=aliases.explicit_keys,
        version=version,
    )
    return resolved, table


def _deduplicate(
    transactions: Sequence[Transaction],
) -> tuple[list[Transaction], list[DuplicateRecord]]:
    # ``claimed[k]`` is how many copies of ``k`` some earlier source already
    # contributed; a later source only adds the copies beyond that count.
    claimed: Counter[_DedupKey] = Counter()
    kept_by_key: defaultdict[_DedupKey, list[Transaction]] = defaultdict(list)
    seen: Counter[tuple[str, _DedupKey]] = Counter()
    kept: list[Transaction] = []
    dropped: list[DuplicateRecord] = []

    for tx in transactions:
        k = (tx.date, tx.amount, tx.category)
        seen[(tx.source_id, k)] += 1
        n = seen[(tx.source_id, k)]
        if n <= claimed[k]:
            dropped.append(DuplicateRecord(dropped=tx, kept=kept_by_key[k][n - 1]))
            continue
        claimed[k] = n
        kept_by_key[k].append(tx)
        kept.append(tx)
    return kept, dropped


def reconcile(
    batches: Sequence[SourceBatch],
    aliases: CategoryAliasTable | None = None,
) -> Reconciliation:
    """Resolve categories, drop cross-source duplicates and sort by date.

    ``batches`` must be in load order: it decides both which spelling wins a
    category and which copy of a duplicate is kept.
    """

    resolved, table = _resolve_categories(batches, aliases or CategoryAliasTable())
    kept, duplicates = _deduplicate(resolved)
    # ``sorted`` is stable, so equal dates keep load order.
    ordered = tuple(sorted(kept, key=lambda t: t.date))

    rejected = tuple(r for b in batches for r in b.rejected)
    rows_seen = sum(b.rows_seen for b in batches)
    _logger.info(
        "reconcile:done sources=%d transactions=%d duplicates=%d categories=%d",
        len(batches),
        len(ordered),
        len(duplicates),
        len({t.category for t in ordered}),
    )
    return Reconciliation(
        transactions=ordered,
        aliases=table,
        duplicates=tuple(duplicates),
        rejected=rejected,
        rows_seen=rows_seen,
    )


__all__ = ["CategoryAliasTable", "Reconciliation", "build_alias_table", "reconcile"]
