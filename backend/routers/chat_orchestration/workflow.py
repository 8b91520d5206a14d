"""
Workflow Tracker - ordered process completion and persona rendering.

Processes are the configured milestones ("1. 询问客户具体需求", ...). The main
model announces a finished milestone with the marker 我已完成流程[<name>];
after a successful turn each marker is resolved to a process and that
process completes only if it is PENDING and every prerequisite is already
COMPLETED. Status never moves back to PENDING except through reset().

The process list and dependency graph are captured when the tracker is
built (session start or reset), so configuration edits take effect on the
next reset.
"""

import logging
import re
from collections import OrderedDict
from typing import Dict, List, Optional

from .models import ProcessStatus, WorkflowState

logger = logging.getLogger(__name__)

COMPLETION_MARKER_RE = re.compile(r"[（(]?我已完成流程\s*[\[【]([^\]】]+)[\]】][）)]?")
PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
INTERRUPT_WORD = "打断"
INTERRUPT_TRIGGERED = "已触发"
INTERRUPT_EMPTY = "空值"
NO_TASKS = "无"

_NUMBER_PREFIX_RE = re.compile(r"^\d+\.?\s*")


def parse_processes(text: str) -> List[str]:
    """Newline-separated process names, blank lines dropped, order kept."""
    seen = []
    for line in (text or "").splitlines():
        name = line.strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def sanitize_process_name(name: str) -> str:
    """'1. 产品介绍*' -> '产品介绍'"""
    return _NUMBER_PREFIX_RE.sub("", name).replace("*", "").strip()


def find_process(processes: List[str], name_or_id: str) -> Optional[str]:
    """Resolve a reference to a configured process.

    Tried in order: full name (case-insensitive), leading number ("2" or
    "2." matches "2. 确认客户身份信息"), then the name without its number and
    '*' markers.
    """
    ref = (name_or_id or "").strip()
    if not ref:
        return None

    for p in processes:
        if p.strip().lower() == ref.lower():
            return p

    number = ref.rstrip(".")
    if number.isdigit():
        pattern = re.compile(rf"^{re.escape(number)}[.\s]")
        for p in processes:
            if pattern.match(p.strip()):
                return p

    for p in processes:
        if sanitize_process_name(p).lower() == sanitize_process_name(ref).lower():
            return p
    return None


def parse_dependencies(processes: List[str], text: str) -> Dict[str, List[str]]:
    """Parse lines of 'A -> B, C' (A depends on B and C).

    Lines without '->' and references that do not resolve are skipped.
    """
    rules: Dict[str, List[str]] = {}
    for line in (text or "").splitlines():
        if "->" not in line:
            continue
        left, _, right = line.partition("->")
        process = find_process(processes, left)
        if process is None:
            logger.warning(f"Dependency ignored, unknown process: {left.strip()!r}")
            continue
        prerequisites = []
        for ref in right.split(","):
            resolved = find_process(processes, ref)
            if resolved is None:
                if ref.strip():
                    logger.warning(f"Dependency ignored, unknown prerequisite: {ref.strip()!r}")
                continue
            if resolved != process and resolved not in prerequisites:
                prerequisites.append(resolved)
        if prerequisites:
            rules.setdefault(process, [])
            rules[process].extend(p for p in prerequisites if p not in rules[process])
    return rules


def extract_markers(reply: str) -> List[str]:
    return [m.strip() for m in COMPLETION_MARKER_RE.findall(reply or "")]


def strip_markers(reply: str) -> str:
    """Remove completion markers from the user-visible reply."""
    cleaned = COMPLETION_MARKER_RE.sub("", reply or "")
    return re.sub(r"[ \t]+\n", "\n", cleaned).strip()


def render_template(template: str, values: Dict[str, str]) -> str:
    """Substitute {name} placeholders; unknown ones are left as written."""
    return PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template or "")


class WorkflowTracker:
    """Process status for one session."""

    def __init__(self, processes: List[str], dependencies: Optional[Dict[str, List[str]]] = None):
        self.processes = list(processes)
        self.dependencies = dependencies or {}
        self.status: "OrderedDict[str, ProcessStatus]" = OrderedDict()
        self.reset()

    @classmethod
    def from_config(cls, processes_text: str, dependencies_text: str) -> "WorkflowTracker":
        processes = parse_processes(processes_text)
        return cls(processes, parse_dependencies(processes, dependencies_text))

    def reset(self) -> None:
        self.status = OrderedDict((p, ProcessStatus.PENDING) for p in self.processes)

    def dependencies_met(self, process: str) -> bool:
        return all(self.status.get(dep) == ProcessStatus.COMPLETED for dep in self.dependencies.get(process, []))

    def pending(self) -> List[str]:
        return [p for p, s in self.status.items() if s == ProcessStatus.PENDING]

    def available_tasks(self) -> List[str]:
        """Pending processes whose prerequisites are all completed."""
        return [p for p in self.pending() if self.dependencies_met(p)]

    def complete(self, reference: str) -> Optional[str]:
        """Complete one process by reference. Returns its name if it changed."""
        process = find_process(self.processes, reference)
        if process is None:
            logger.info(f"Completion marker for unknown process: {reference!r}")
            return None
        if self.status[process] == ProcessStatus.COMPLETED:
            return None
        if not self.dependencies_met(process):
            missing = [d for d in self.dependencies.get(process, []) if self.status.get(d) != ProcessStatus.COMPLETED]
            logger.info(f"Process '{process}' not completed, waiting on: {', '.join(missing)}")
            return None
        self.status[process] = ProcessStatus.COMPLETED
        logger.info(f"Process completed: {process}")
        return process

    def apply_reply(self, reply: str) -> List[str]:
        """Complete every process announced in the reply, in order of mention."""
        completed = []
        for reference in extract_markers(reply):
            name = self.complete(reference)
            if name:
                completed.append(name)
        return completed

    def placeholder_values(self, user_message: str = "") -> Dict[str, str]:
        tasks = self.available_tasks()
        return {
            "tasks": ", ".join(tasks) if tasks else NO_TASKS,
            "workflow": ", ".join(self.processes),
            "code": INTERRUPT_TRIGGERED if (user_message or "").strip() == INTERRUPT_WORD else INTERRUPT_EMPTY,
        }

    def render_persona(self, template: str, user_message: str = "") -> str:
        return render_template(template, self.placeholder_values(user_message))

    def snapshot(self, persona: str, opening_monologue: Optional[str] = None) -> WorkflowState:
        return WorkflowState(
            process_status=OrderedDict(self.status),
            persona=persona,
            opening_monologue=opening_monologue,
        )
