from __future__ import annotations

import itertools
from datetime import datetime, timezone

from stepflow.application.port import WorkflowStorage
from stepflow.domain.entity import Workflow, WorkflowSummary


class InMemoryWorkflowStorage(WorkflowStorage):
    """Keeps workflow definitions in a dict. Nothing survives the process."""

    def __init__(self):
        self._workflows: dict[str, tuple[Workflow, WorkflowSummary, int]] = {}
        # orders saves that share a timestamp
        self._sequence = itertools.count()

    def save(self, workflow: Workflow, tags: list[str] | None = None) -> None:
        now = datetime.now(timezone.utc)
        existing = self._workflows.get(workflow.id)
        created_at = existing[1].created_at if existing is not None else now
        summary = WorkflowSummary(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            step_count=workflow.step_count,
            tags=list(tags or []),
            created_at=created_at,
            updated_at=now,
        )
        self._workflows[workflow.id] = (workflow, summary, next(self._sequence))

    def load(self, workflow_id: str) -> Workflow | None:
        stored = self._workflows.get(workflow_id)
        return stored[0] if stored is not None else None

    def list(self) -> list[WorkflowSummary]:
        ordered = sorted(self._workflows.values(), key=lambda item: (item[1].updated_at, item[2]), reverse=True)
        return [summary for _, summary, _ in ordered]

    def delete(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    def exists(self, workflow_id: str) -> bool:
        return workflow_id in self._workflows

    def clear(self) -> None:
        self._workflows.clear()
