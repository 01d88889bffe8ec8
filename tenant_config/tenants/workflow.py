from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field

from tenant_config.tenants.errors import StatusNotFoundError, TransitionNotAllowedError
from tenant_config.tenants.schemas import Status, Workflow


def _allowed_transitions(status: Status) -> list[str] | None:
    return getattr(status, "allowed_transitions", None)


@dataclass
class WorkflowReport:
    dangling_references: list[tuple[str, str]] = field(default_factory=list)
    duplicate_defaults: list[str] = field(default_factory=list)
    missing_final_status: bool = False
    unreachable_final_statuses: list[str] = field(default_factory=list)
    unknown_rule_statuses: list[tuple[str, str]] = field(default_factory=list)
    conflicting_rules: list[str] = field(default_factory=list)
    invalid_conversion_statuses: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (
            self.dangling_references
            or self.duplicate_defaults
            or self.missing_final_status
            or self.unreachable_final_statuses
            or self.unknown_rule_statuses
            or self.conflicting_rules
            or self.invalid_conversion_statuses
        )


class WorkflowValidator:
    def can_transition(self, from_status: Status, to_id: str) -> bool:
        if from_status.is_final:
            return to_id == from_status.id
        if to_id == from_status.id:
            return True
        allowed = _allowed_transitions(from_status)
        if allowed is None:
            return True
        return to_id in allowed

    def transition(self, statuses: Sequence[Status], from_id: str, to_id: str, kind: str = "lead") -> Status:
        by_id = {status.id: status for status in statuses}
        current = by_id.get(from_id)
        if current is None:
            raise StatusNotFoundError(kind, from_id)
        target = by_id.get(to_id)
        if target is None:
            raise StatusNotFoundError(kind, to_id)
        if current.is_final and to_id != from_id:
            raise TransitionNotAllowedError(from_id, to_id, "source status is final")
        if not self.can_transition(current, to_id):
            raise TransitionNotAllowedError(from_id, to_id, "target not in allowed transitions")
        return target

    def is_reachable(self, statuses: Sequence[Status], start_id: str, target_id: str) -> bool:
        by_id = {status.id: status for status in statuses}
        if start_id not in by_id or target_id not in by_id:
            return False
        if start_id == target_id:
            return True

        visited = {start_id}
        frontier: deque[tuple[str, int]] = deque([(start_id, 0)])
        max_hops = len(by_id)
        while frontier:
            current_id, hops = frontier.popleft()
            if hops >= max_hops:
                continue
            current = by_id[current_id]
            for candidate_id in by_id:
                if candidate_id in visited or not self.can_transition(current, candidate_id):
                    continue
                if candidate_id == target_id:
                    return True
                visited.add(candidate_id)
                frontier.append((candidate_id, hops + 1))
        return False

    def find_dangling_references(self, statuses: Sequence[Status]) -> list[tuple[str, str]]:
        known_ids = {status.id for status in statuses}
        dangling: list[tuple[str, str]] = []
        for status in statuses:
            for target_id in _allowed_transitions(status) or []:
                if target_id not in known_ids:
                    dangling.append((status.id, target_id))
        return dangling

    def validate(self, statuses: Sequence[Status], workflow: Workflow | None = None) -> WorkflowReport:
        report = WorkflowReport(dangling_references=self.find_dangling_references(statuses))
        by_id = {status.id: status for status in statuses}

        defaults = [status.id for status in statuses if status.is_default]
        if len(defaults) > 1:
            report.duplicate_defaults = defaults

        finals = [status for status in statuses if status.is_final]
        report.missing_final_status = bool(statuses) and not finals

        start = defaults[0] if defaults else None
        if start is not None:
            report.unreachable_final_statuses = [
                final.id for final in finals if not self.is_reachable(statuses, start, final.id)
            ]

        if workflow is None:
            return report

        for rule in workflow.auto_status_changes:
            for status_id in (rule.from_status, rule.to_status):
                if status_id not in by_id:
                    report.unknown_rule_statuses.append((rule.id, status_id))
            source = by_id.get(rule.from_status)
            if source is not None and rule.enabled and not self.can_transition(source, rule.to_status):
                report.conflicting_rules.append(rule.id)

        for status_id in workflow.lead_to_customer_statuses:
            status = by_id.get(status_id)
            if status is None or not status.is_final:
                report.invalid_conversion_statuses.append(status_id)
        return report
