"""
Per-workspace rule-set loading with a short TTL cache.
Retrieval fails open: a table that cannot be read contributes no rules.
"""

import sqlite3
import time
from typing import Callable, Dict, List, Optional, Tuple

from ..core import config, dao
from ..util.logging import logger
from .types import RuleSet


class RulesLoader:
    """Loads guardrails, escalation policies and compliance checks for a workspace."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = config.get_rules_cache_ttl() if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: Dict[str, Tuple[float, RuleSet]] = {}

    def _fetch(self, workspace_id: str, kind: str, fetcher: Callable[[str], List]) -> List:
        try:
            return fetcher(workspace_id)
        except sqlite3.Error as e:
            logger.warning(f"Could not load {kind} for workspace {workspace_id}, continuing without them: {e}")
            return []

    def load(self, workspace_id: str) -> RuleSet:
        """Rule set for the workspace, from cache when fresh."""
        now = self._clock()
        cached = self._cache.get(workspace_id)
        if cached and cached[0] > now:
            return cached[1]

        rules = RuleSet(
            guardrails=self._fetch(workspace_id, "guardrails", dao.get_guardrails),
            escalation_policies=self._fetch(workspace_id, "escalation policies", dao.get_escalation_policies),
            compliance_checks=self._fetch(workspace_id, "compliance checks", dao.get_compliance_checks),
        )
        if self.ttl_seconds > 0:
            self._cache[workspace_id] = (now + self.ttl_seconds, rules)

        logger.log_operation("rules.load", "success", {
            "workspace_id": workspace_id,
            "guardrails": len(rules.guardrails),
            "escalation_policies": len(rules.escalation_policies),
            "compliance_checks": len(rules.compliance_checks),
        })
        return rules

    def invalidate(self, workspace_id: str = None):
        """Drop the cached rule set of one workspace, or all of them."""
        if workspace_id is None:
            self._cache.clear()
        else:
            self._cache.pop(workspace_id, None)


# Global loader instance
rules_loader = RulesLoader()


def load_rules(workspace_id: str) -> RuleSet:
    return rules_loader.load(workspace_id)


def invalidate_rules(workspace_id: str = None):
    rules_loader.invalidate(workspace_id)
