# transfer_rules.py
"""
Named predicates that mark movements between the entrepreneur's own accounts.

Two kinds of rules, both loaded from YAML:
- PatternRule: regexes over description + counterparty of a single row.
- PairingRule: an outgoing row and an incoming row that mirror each other
  (near-equal amount, close dates, both mentioning a transfer).

Matching rows get type `transfer` and the name of the rule that fired, so a
reviewer can see why a row left income/expenses.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import yaml

from .config import TRANSFER_RULES_PATH
from .errors import RulesConfigError
from .schemas import TxType
from .statement_rows import StatementRow

logger = logging.getLogger(__name__)

_rules_cache: Dict[str, "TransferRuleSet"] = {}


DIRECTIONS = ("any", "outgoing", "incoming")


@dataclass(frozen=True)
class PatternRule:
    name: str
    patterns: Tuple[re.Pattern, ...]
    direction: str = "any"

    def __call__(self, row: StatementRow) -> bool:
        if self.direction == "outgoing" and row.amount >= 0:
            return False
        if self.direction == "incoming" and row.amount <= 0:
            return False
        text = row.text
        return any(p.search(text) for p in self.patterns)


@dataclass(frozen=True)
class PairingRule:
    name: str
    hints: Tuple[re.Pattern, ...]
    amount_tolerance: Decimal
    max_days: int

    def has_hint(self, row: StatementRow) -> bool:
        text = row.text
        return any(h.search(text) for h in self.hints)

    def mirrors(self, out_row: StatementRow, in_row: StatementRow) -> bool:
        a, b = out_row.magnitude, in_row.magnitude
        if abs(a - b) > self.amount_tolerance * max(a, b):
            return False
        return abs((out_row.date - in_row.date).days) <= self.max_days

    def pairs(self, rows: Sequence[StatementRow]) -> List[Tuple[int, int]]:
        """
        Index pairs (outgoing, incoming), matched greedily in source order.

        Each row takes part in at most one pair.
        """
        candidates = [i for i, r in enumerate(rows) if r.type != TxType.TRANSFER and self.has_hint(r)]
        used: set[int] = set()
        found: List[Tuple[int, int]] = []
        for i in candidates:
            if i in used or rows[i].amount >= 0:
                continue
            for j in candidates:
                if j in used or j == i or rows[j].amount <= 0:
                    continue
                if self.mirrors(rows[i], rows[j]):
                    used.update((i, j))
                    found.append((i, j))
                    break
        return found


@dataclass
class TransferRuleSet:
    patterns: List[PatternRule] = field(default_factory=list)
    pairing: Optional[PairingRule] = None

    @property
    def names(self) -> List[str]:
        names = [p.name for p in self.patterns]
        if self.pairing:
            names.append(self.pairing.name)
        return names

    def classify(self, rows: List[StatementRow], warn: Optional[Callable[[int, str], None]] = None) -> int:
        """
        Mark transfer rows in place; returns how many were reclassified.

        `warn(line_no, message)` is told about every incoming row a pattern
        rule took out of income. Rows already typed `transfer` are left alone.
        """
        marked = 0
        for row in rows:
            if row.type == TxType.TRANSFER:
                continue
            for rule in self.patterns:
                if rule(row):
                    row.type = TxType.TRANSFER
                    row.transfer_rule = rule.name
                    marked += 1
                    if warn is not None and row.amount > 0:
                        warn(row.line_no, f"incoming amount treated as transfer by rule '{rule.name}', not as income")
                    break

        if self.pairing is not None:
            for i, j in self.pairing.pairs(rows):
                for idx in (i, j):
                    rows[idx].type = TxType.TRANSFER
                    rows[idx].transfer_rule = self.pairing.name
                    marked += 1
        return marked


def _compile(patterns: Sequence[str], where: str) -> Tuple[re.Pattern, ...]:
    try:
        return tuple(re.compile(p, re.IGNORECASE) for p in patterns)
    except re.error as e:
        raise RulesConfigError(f"Invalid transfer rule pattern in {where}: {e}") from e


def _pattern_rule(name: str, raw) -> PatternRule:
    # a bare list is shorthand for {match: [...], direction: any}
    if isinstance(raw, dict):
        regexes, direction = raw.get("match") or [], str(raw.get("direction", "any")).lower()
    else:
        regexes, direction = raw or [], "any"
    if direction not in DIRECTIONS:
        raise RulesConfigError(f"Transfer rule {name}: direction must be one of {DIRECTIONS}, got {direction!r}")
    return PatternRule(name=name, patterns=_compile(regexes, name), direction=direction)


def build_rule_set(data: dict) -> TransferRuleSet:
    patterns = [_pattern_rule(name, raw) for name, raw in (data.get("patterns") or {}).items()]
    pairing = None
    raw = data.get("pairing")
    if raw:
        name = raw.get("name", "paired_movement")
        pairing = PairingRule(
            name=name,
            hints=_compile(raw.get("hints") or [], name),
            amount_tolerance=Decimal(str(raw.get("amount_tolerance", "0"))),
            max_days=int(raw.get("max_days", 0)),
        )
    return TransferRuleSet(patterns=patterns, pairing=pairing)


def load_transfer_rules(path: Path | None = None, force_reload: bool = False) -> TransferRuleSet:
    """
    Load the transfer rule set.

    Args:
        path: Alternative YAML file (defaults to the configured one)
        force_reload: Force reload from disk even if cached
    """
    path = Path(path or TRANSFER_RULES_PATH)
    key = str(path.resolve())
    if key in _rules_cache and not force_reload:
        return _rules_cache[key]

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise RulesConfigError(f"Transfer rules not found: {path}") from None
    except yaml.YAMLError as e:
        raise RulesConfigError(f"Error parsing transfer rules {path}: {e}") from e

    rule_set = build_rule_set(data)
    _rules_cache[key] = rule_set
    logger.info("Loaded transfer rules %s from %s", rule_set.names, path)
    return rule_set
