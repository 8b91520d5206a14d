"""
Rule Engine - selects a strategy for a classified message.

select() is a pure function of its inputs:
1. A sensitive result short-circuits to SENSITIVE before any matching.
2. Candidates are rules whose trigger intent equals the detected intent
   exactly (an empty intent never matches).
3. With a detected emotion, rules for that emotion are preferred; without
   one (or with no emotion-specific rule), only rules with no trigger
   emotion remain.
4. Candidates are ordered by priority desc, emotion-specific first, id asc.
5. No candidate means UNCLEAR.

Rows that fail validation, or whose strategy key does not resolve to an
active strategy card, are skipped.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from errors import ErrorCode, RuleValidationError
from .models import (
    ClassifierResult,
    ResolvedStrategy,
    Rule,
    SENSITIVE,
    StrategyDecision,
    UNCLEAR,
)

logger = logging.getLogger(__name__)

RuleLike = Union[Rule, Dict[str, Any]]


def _coerce_rules(rules: Iterable[RuleLike]) -> List[Rule]:
    valid = []
    for item in rules:
        if isinstance(item, Rule):
            valid.append(item)
            continue
        try:
            valid.append(Rule.from_row(item))
        except RuleValidationError as e:
            logger.warning(f"Skipping malformed rule {e.context}: {e.message}")
        except AttributeError:
            logger.warning(f"Skipping malformed rule row: {item!r}")
    return valid


def _strategy_text(rule: Rule, strategies: Optional[Mapping[str, str]]) -> Optional[str]:
    if strategies is None:
        return rule.strategy_key
    text = strategies.get(rule.strategy_key)
    if not text:
        logger.warning(
            f"{ErrorCode.RULE_STRATEGY_MISSING.value}: rule {rule.id} references "
            f"'{rule.strategy_key}', which is missing or inactive; skipped"
        )
        return None
    return text


def select(
    rules: Iterable[RuleLike],
    result: ClassifierResult,
    strategies: Optional[Mapping[str, str]] = None,
) -> StrategyDecision:
    """Pick the strategy for one classifier result.

    Args:
        rules: Active rules (Rule objects or raw rows)
        result: Classifier output for this turn
        strategies: strategyKey -> text for active cards; None uses the key
            itself as the strategy text

    Returns:
        ResolvedStrategy, UNCLEAR or SENSITIVE
    """
    if result.is_sensitive:
        return SENSITIVE

    intent = (result.intent or "").strip()
    if not intent:
        return UNCLEAR

    matches = [
        (rule, text)
        for rule in _coerce_rules(rules)
        if rule.trigger_intent == intent
        for text in [_strategy_text(rule, strategies)]
        if text is not None
    ]

    emotion = (result.emotion or "").strip() or None
    candidates = []
    if emotion:
        candidates = [m for m in matches if m[0].trigger_emotion == emotion]
    if not candidates:
        candidates = [m for m in matches if m[0].trigger_emotion is None]

    if not candidates:
        return UNCLEAR

    rule, text = min(candidates, key=lambda m: m[0].sort_key())
    return ResolvedStrategy(text=text, rule_id=rule.id, strategy_key=rule.strategy_key)
