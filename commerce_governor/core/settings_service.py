"""
Workspace automation settings mutation.
Switching to auto mode supersedes every pending approval in the same transaction as the
settings write, so the caller never observes auto mode alongside stale approvals.
"""

import sqlite3
from typing import Any, Dict, Tuple

from . import dao
from .approval import approval_workflow
from .db import get_db
from .schema import AUTOMATION_MODES, MODE_AUTO, MODE_MANUAL, ActionLogEntry, WorkspaceAutomationSettings
from ..util.logging import logger

UPDATABLE_FIELDS = (
    "mode", "confidence_threshold", "ai_voice", "do_list", "dont_list",
    "escalation_rules", "quiet_hours", "compliance_notes",
)


def get_or_default(workspace_id: str) -> WorkspaceAutomationSettings:
    return dao.get_settings(workspace_id) or WorkspaceAutomationSettings(workspace_id=workspace_id, mode=MODE_MANUAL)


def update_settings(workspace_id: str, changes: Dict[str, Any]) -> Tuple[WorkspaceAutomationSettings, int]:
    """Apply `changes` and persist. Returns the new settings and the number of superseded approvals."""
    current = get_or_default(workspace_id)
    merged = current.to_dict()
    for key, value in changes.items():
        if key not in UPDATABLE_FIELDS:
            raise ValueError(f"Unknown settings field: {key}")
        if value is not None:
            merged[key] = value

    updated = WorkspaceAutomationSettings.from_dict(merged)
    if updated.mode not in AUTOMATION_MODES:
        raise ValueError(f"Invalid mode: {updated.mode}")
    if not 0 <= updated.confidence_threshold <= 100:
        raise ValueError("confidence_threshold must be between 0 and 100")

    old_mode = current.mode
    switching_to_auto = updated.mode == MODE_AUTO and old_mode != MODE_AUTO
    superseded = 0

    with get_db() as conn:
        try:
            dao.save_settings(updated, conn=conn)
            if switching_to_auto:
                superseded = approval_workflow.supersede_pending(workspace_id, conn=conn)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise

    if updated.mode != old_mode:
        dao.append_action_log(ActionLogEntry(
            workspace_id=workspace_id,
            action_type="mode_switch",
            action_payload={"from": old_mode, "to": updated.mode, "superseded_approvals": superseded},
            automation_mode=updated.mode,
            execution_method="system",
            result="success",
        ))
        logger.log_mode_switch(workspace_id, old_mode, updated.mode, superseded)

    return updated, superseded
