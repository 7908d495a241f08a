"""Parent -> child status propagation.

Some parent operations invalidate artifacts owned by children (a re-added
alias must rewrite the custom DNS records living in its zone, a disabled
domain takes its subdomains down).  Those relations are declared once in
``CASCADE_RULES`` instead of inside each handler.

Rules only move children sitting in one of ``from_statuses``.  A child
that is already pending, being deleted or in error is never overwritten.
Children moved here are picked up by the next pass.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from hostpanel.db import EntityType, cascade_status
from hostpanel.status import (
    DISABLED,
    OK,
    TOADD,
    TOCHANGE,
    TODELETE,
    TODISABLE,
    TOENABLE,
    TORESTORE,
    Result,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeRule:
    parent: EntityType
    # Parent statuses (the keyword being processed) that fire the rule.
    on_statuses: frozenset[str]
    child: EntityType
    # SQL condition on the child table; ``?`` is bound to ``parent_key``.
    where: str
    from_statuses: frozenset[str]
    to_status: str
    parent_key: str = "id"
    # Parent row columns that must hold these values for the rule to apply.
    when: Mapping[str, Any] = field(default_factory=dict)


_REFRESH = frozenset({TOCHANGE, TOENABLE, TORESTORE})
_OK = frozenset({OK})

CASCADE_RULES: tuple[CascadeRule, ...] = (
    CascadeRule(
        EntityType.DOMAIN, _REFRESH, EntityType.CUSTOM_DNS,
        "domain_id = ? AND alias_id IS NULL", _OK, TOCHANGE,
    ),
    CascadeRule(
        EntityType.ALIAS, _REFRESH, EntityType.CUSTOM_DNS, "alias_id = ?", _OK, TOCHANGE,
    ),
    CascadeRule(
        EntityType.DOMAIN, frozenset({TODISABLE}), EntityType.SUBDOMAIN,
        "domain_id = ?", _OK, TODISABLE,
    ),
    CascadeRule(
        EntityType.DOMAIN, frozenset({TODISABLE}), EntityType.ALIAS,
        "domain_id = ?", _OK, TODISABLE,
    ),
    CascadeRule(
        EntityType.ALIAS, frozenset({TODISABLE}), EntityType.SUBALIAS,
        "alias_id = ?", _OK, TODISABLE,
    ),
    CascadeRule(
        EntityType.DOMAIN, frozenset({TOENABLE}), EntityType.SUBDOMAIN,
        "domain_id = ?", frozenset({DISABLED}), TOENABLE,
    ),
    CascadeRule(
        EntityType.DOMAIN, frozenset({TOENABLE}), EntityType.ALIAS,
        "domain_id = ?", frozenset({DISABLED}), TOENABLE,
    ),
    CascadeRule(
        EntityType.ALIAS, frozenset({TOENABLE}), EntityType.SUBALIAS,
        "alias_id = ?", frozenset({DISABLED}), TOENABLE,
    ),
    # A certificate change must be reflected in the owning site's vhost.
    *(
        CascadeRule(
            EntityType.SSL, frozenset({TOADD, TOCHANGE, TODELETE}), site,
            f"{column} = ?", _OK, TOCHANGE,
            parent_key="domain_id", when={"domain_type": domain_type},
        )
        for domain_type, site, column in (
            ("dmn", EntityType.DOMAIN, "domain_id"),
            ("als", EntityType.ALIAS, "alias_id"),
            ("sub", EntityType.SUBDOMAIN, "subdomain_id"),
            ("subals", EntityType.SUBALIAS, "subdomain_alias_id"),
        )
    ),
)


def rules_for(parent: EntityType, status: str) -> list[CascadeRule]:
    return [r for r in CASCADE_RULES if r.parent is parent and status in r.on_statuses]


def apply_cascades(
    conn: sqlite3.Connection,
    parent: EntityType,
    status: str,
    row: Mapping[str, Any],
) -> Result:
    """Apply every rule for ``parent`` processing ``status``.

    ``row`` holds the parent's columns; ``id`` is its primary key.
    """
    for rule in rules_for(parent, status):
        if any(row.get(key) != value for key, value in rule.when.items()):
            continue
        try:
            moved = cascade_status(
                conn,
                rule.child,
                where=rule.where,
                params=(row[rule.parent_key],),
                from_statuses=rule.from_statuses,
                to_status=rule.to_status,
            )
        except sqlite3.Error as exc:
            return Result.fail(f"Could not update {rule.child} rows: {exc}")
        if moved:
            log.info(
                "%s %s (%s): moved %d %s row(s) to %s",
                parent, row["id"], status, moved, rule.child, rule.to_status,
            )
    return Result.ok()
