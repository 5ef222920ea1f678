"""End-to-end review of a proposed change, and validation of its result.

``review`` loads configuration and the registry once, walks the decision
tables, aggregates the verdicts and appends the Decision to the store.
With ``apply=True`` an approved decision's growth is also written back to
the registry documents.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
from typing import TYPE_CHECKING

import keeper.engine.aggregator
import keeper.engine.config
import keeper.engine.matrix
import keeper.engine.models
import keeper.engine.registry
import keeper.engine.store
import keeper.engine.validator

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger("keeper.engine.review")


@dataclasses.dataclass
class ReviewResult:
    decision: keeper.engine.models.Decision
    verdicts: list[keeper.engine.models.Verdict]
    applied: list[str] = dataclasses.field(default_factory=list)


def load_registry(
    root: pathlib.Path,
    config: keeper.engine.config.KeeperConfig,
    store: keeper.engine.store.DecisionStore | None = None,
) -> keeper.engine.registry.Registry:
    """Load the registry and raise usage counts to the persisted values."""
    registry = keeper.engine.registry.load(config.seeds_path(root))
    store = store or keeper.engine.store.DecisionStore(root)
    registry.merge_usage(store.usage_counts())
    return registry


def review(
    proposal: keeper.engine.models.ProposedChange,
    *,
    root: pathlib.Path,
    mode: keeper.engine.models.Mode | str | None = None,
    config: keeper.engine.config.KeeperConfig | None = None,
    registry: keeper.engine.registry.Registry | None = None,
    store: keeper.engine.store.DecisionStore | None = None,
    apply: bool = False,
) -> ReviewResult:
    """Evaluate *proposal* and record the resulting Decision.

    The mode is resolved once, before any table runs, and snapshotted into
    the Decision. Fatal errors propagate before anything is written.
    """
    config = config or keeper.engine.config.load(root)
    resolved = keeper.engine.models.parse_mode(
        mode if mode is not None else config.mode
    )
    store = store or keeper.engine.store.DecisionStore(root)
    if registry is None:
        registry = load_registry(root, config, store)

    logger.debug("Reviewing %r in %s mode (%d items)",
                 proposal.title, resolved, len(proposal.items))
    verdicts = keeper.engine.matrix.evaluate(proposal, registry, resolved, config)
    decision = keeper.engine.aggregator.aggregate(
        verdicts, mode=resolved, title=proposal.title
    )
    decision_id = store.write(decision)
    decision = dataclasses.replace(decision, id=decision_id)
    logger.info("%s: %s (%s mode)", decision.label, decision.status, resolved)

    applied: list[str] = []
    if apply and decision.status is keeper.engine.models.Status.APPROVED:
        applied = registry.apply_decision(decision)
        if registry.source is not None:
            registry.save()
        for change in applied:
            logger.info("  %s", change)
    return ReviewResult(decision=decision, verdicts=verdicts, applied=applied)


def resolve_decision(
    store: keeper.engine.store.DecisionStore, decision_id: str | None = None
) -> keeper.engine.models.Decision:
    """Return the decision with *decision_id*, or the latest one."""
    if decision_id is None:
        return store.latest()
    return store.read(decision_id)


def validate_changeset(
    changeset: Iterable[keeper.engine.models.ChangeItem],
    *,
    root: pathlib.Path,
    decision_id: str | None = None,
    store: keeper.engine.store.DecisionStore | None = None,
) -> keeper.engine.models.Report:
    """Check *changeset* against a stored decision (latest by default)."""
    store = store or keeper.engine.store.DecisionStore(root)
    decision = resolve_decision(store, decision_id)
    report = keeper.engine.validator.validate(decision, changeset)
    if report.passed:
        logger.info("%s: changeset passes", decision.label)
    else:
        logger.info("%s: %d violation(s)", decision.label, len(report.violations))
    return report
