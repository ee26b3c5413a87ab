"""
Item Sets and Screening Decisions
=================================

An ``ItemSet`` is the list of scale items still in play at a given stage.
Every screening or pruning step narrows it by value and appends a
``ScreeningDecision`` to its trail, so the final scale can be traced back to
the rule (metric + threshold) that removed each item.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Mapping, Tuple

import pandas as pd


@dataclass(frozen=True)
class ScreeningDecision:
    """
    Outcome of applying one decision rule to a set of items.

    Attributes
    ----------
    stage : str
        Pipeline stage that produced the decision (e.g. "distribution").
    metric : str
        Name of the per-item metric the rule was evaluated on.
    threshold : float
        Cut-off applied to the metric.
    items_matched : tuple of str
        Items the rule flagged, in item-name order.
    values : dict
        Metric value for every evaluated item.
    rationale : str
        Free-text explanation, used when a rule needs analyst context.
    """

    stage: str
    metric: str
    threshold: float
    items_matched: Tuple[str, ...]
    values: Mapping[str, float] = field(default_factory=dict)
    rationale: str = ""

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                'stage': self.stage,
                'item': item,
                'metric': self.metric,
                'value': value,
                'threshold': self.threshold,
                'flagged': item in self.items_matched,
            }
            for item, value in sorted(self.values.items())
        ]
        return pd.DataFrame(rows, columns=['stage', 'item', 'metric', 'value', 'threshold', 'flagged'])


@dataclass(frozen=True)
class ItemSet:
    """Ordered, shrinking set of item names with its decision trail."""

    items: Tuple[str, ...]
    trail: Tuple[ScreeningDecision, ...] = ()
    frozen: bool = False

    @classmethod
    def from_columns(cls, columns: Iterable[str]) -> "ItemSet":
        names = tuple(dict.fromkeys(str(c) for c in columns))
        return cls(items=names)

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item: object) -> bool:
        return item in self.items

    def drop(self, decision: ScreeningDecision) -> "ItemSet":
        """Remove the items a decision matched; unknown names are ignored."""
        if self.frozen:
            raise ValueError("ItemSet is frozen; the final scale cannot be narrowed further")
        removed = set(decision.items_matched)
        remaining = tuple(item for item in self.items if item not in removed)
        return replace(self, items=remaining, trail=self.trail + (decision,))

    def retain(self, keep: Iterable[str], stage: str, rationale: str = "") -> "ItemSet":
        """Keep only ``keep``; everything else is recorded as removed at ``stage``."""
        keep = set(keep)
        unknown = keep.difference(self.items)
        if unknown:
            raise ValueError(f"Cannot retain items outside the set: {sorted(unknown)}")
        dropped = tuple(item for item in self.items if item not in keep)
        decision = ScreeningDecision(
            stage=stage,
            metric="retained",
            threshold=float("nan"),
            items_matched=tuple(sorted(dropped)),
            values={item: float(item in keep) for item in self.items},
            rationale=rationale,
        )
        return self.drop(decision)

    def freeze(self) -> "ItemSet":
        return replace(self, frozen=True)

    def revise(self, keep: Iterable[str], stage: str, rationale: str) -> "ItemSet":
        """
        Narrow a frozen set on confirmatory evidence and freeze it again.

        The reopening is recorded in the trail with metric "reopened", so a
        revision of the final scale is never silent. A rationale is required.
        """
        if not self.frozen:
            raise ValueError("Only a frozen ItemSet can be revised; use retain() before freezing")
        if not rationale:
            raise ValueError("Revising a frozen ItemSet requires a rationale")
        keep = set(keep)
        unknown = keep.difference(self.items)
        if unknown:
            raise ValueError(f"Cannot retain items outside the set: {sorted(unknown)}")
        decision = ScreeningDecision(
            stage=stage,
            metric="reopened",
            threshold=float("nan"),
            items_matched=tuple(sorted(item for item in self.items if item not in keep)),
            values={item: float(item in keep) for item in self.items},
            rationale=rationale,
        )
        return replace(self, frozen=False).drop(decision).freeze()

    def removed_by_stage(self) -> Dict[str, Tuple[str, ...]]:
        removed: Dict[str, Tuple[str, ...]] = {}
        for decision in self.trail:
            removed[decision.stage] = removed.get(decision.stage, ()) + tuple(decision.items_matched)
        return removed

    def trail_frame(self) -> pd.DataFrame:
        frames = [decision.to_frame() for decision in self.trail]
        if not frames:
            return pd.DataFrame(columns=['stage', 'item', 'metric', 'value', 'threshold', 'flagged'])
        return pd.concat(frames, ignore_index=True)

    def to_dict(self) -> dict:
        return {
            'items': list(self.items),
            'frozen': self.frozen,
            'removed': {stage: list(items) for stage, items in self.removed_by_stage().items()},
        }

    @classmethod
    def from_dict(cls, payload: Mapping) -> "ItemSet":
        item_set = cls.from_columns(payload['items'])
        return item_set.freeze() if payload.get('frozen') else item_set

