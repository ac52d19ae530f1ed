"""
Guardrail engine
Checks the candidate response against every enabled rule in priority order and collects
all violations. A rule whose condition cannot be evaluated (bad regex) is skipped.
"""

import re
from typing import List

from ..util.logging import logger
from .types import (
    ENFORCEMENT_BLOCK, ConversationFacts, GuardrailRule, KeywordCondition, LengthCondition,
    PatternCondition, SentimentCondition, TopicCondition, Violation,
)

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def _check_keyword(condition: KeywordCondition, text: str, facts: ConversationFacts):
    if not condition.keywords:
        return None
    haystack = text if condition.case_sensitive else text.lower()
    needles = condition.keywords if condition.case_sensitive else [k.lower() for k in condition.keywords]
    found = [k for k, needle in zip(condition.keywords, needles) if needle in haystack]

    if condition.match_mode == "all":
        if len(found) == len(needles):
            return f"Response contains all restricted keywords: {', '.join(found)}"
        return None
    if found:
        return f"Response contains restricted keyword(s): {', '.join(found)}"
    return None


def _check_length(condition: LengthCondition, text: str, facts: ConversationFacts):
    length = len(text)
    if condition.min is not None and length < condition.min:
        return f"Response too short ({length} < {condition.min} characters)"
    if condition.max is not None and length > condition.max:
        return f"Response too long ({length} > {condition.max} characters)"
    return None


def _check_pattern(condition: PatternCondition, text: str, facts: ConversationFacts):
    if not condition.regex:
        return None
    flags = 0
    for flag in condition.flags:
        flags |= _REGEX_FLAGS.get(flag, 0)
    # re.error propagates to evaluate(), which skips the rule
    if re.search(condition.regex, text, flags):
        return f"Response matches restricted pattern: {condition.regex}"
    return None


def _check_sentiment(condition: SentimentCondition, text: str, facts: ConversationFacts):
    if facts.sentiment < condition.max_negative:
        return f"Conversation sentiment {facts.sentiment:.2f} below {condition.max_negative}"
    return None


def _check_topic(condition: TopicCondition, text: str, facts: ConversationFacts):
    mentioned = [
        topic for topic in condition.topics
        if re.search(r"\b" + re.escape(topic) + r"\b", text, re.IGNORECASE)
    ]
    if mentioned:
        return f"Response mentions restricted topic(s): {', '.join(mentioned)}"
    return None


CHECKS = {
    KeywordCondition: _check_keyword,
    LengthCondition: _check_length,
    PatternCondition: _check_pattern,
    SentimentCondition: _check_sentiment,
    TopicCondition: _check_topic,
}


def evaluate(candidate_response: str, facts: ConversationFacts, rules: List[GuardrailRule]) -> List[Violation]:
    """Evaluate all enabled guardrails; never short-circuits."""
    violations: List[Violation] = []

    for rule in sorted(rules, key=lambda r: r.priority):
        if not rule.enabled:
            continue

        check = CHECKS[type(rule.condition)]
        try:
            reason = check(rule.condition, candidate_response or "", facts)
        except re.error as e:
            logger.warning(f"Skipping guardrail {rule.id} ({rule.name}): invalid pattern: {e}")
            continue

        if reason:
            violations.append(Violation(
                rule_id=rule.id,
                rule_name=rule.name,
                severity="high" if rule.enforcement == ENFORCEMENT_BLOCK else "medium",
                enforcement=rule.enforcement,
                fallback_message=rule.fallback_message,
                reason=reason,
            ))
            logger.log_rule_violation(rule.id, rule.name, rule.enforcement, reason)

    return violations


def has_blocking(violations: List[Violation]) -> bool:
    return any(v.enforcement == ENFORCEMENT_BLOCK for v in violations)


def first_fallback(violations: List[Violation]):
    """Fallback message of the highest-priority blocking violation, else of any violation."""
    for v in violations:
        if v.enforcement == ENFORCEMENT_BLOCK and v.fallback_message:
            return v.fallback_message
    for v in violations:
        if v.fallback_message:
            return v.fallback_message
    return None
