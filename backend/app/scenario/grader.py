from __future__ import annotations

from dataclasses import dataclass

from app.scenario.models import Task


@dataclass
class GradeResult:
    score: float = 0.0
    detail: str = ""


def _answer_text(answer) -> str:
    if isinstance(answer, dict):
        return str(answer.get("text") or "")
    return ""


def _grade_mcq(task: Task, answer) -> GradeResult:
    choice = answer.get("choice") if isinstance(answer, dict) else None
    score = (task.score or 0) if (choice is not None and choice == task.correct) else 0
    return GradeResult(score=score, detail=f"Correct: {task.correct}")


def _grade_freeform(task: Task, answer) -> GradeResult:
    text = _answer_text(answer).strip()
    total = 0.0
    notes: list[str] = []
    for rule in task.rubric:
        # unusable patterns contribute nothing
        if rule.compiled is None:
            continue
        if rule.compiled.search(text):
            total += float(rule.score or 0)
            if rule.why:
                notes.append(rule.why)

    if task.max_score is not None:
        total = min(total, float(task.max_score))
    return GradeResult(score=total, detail="; ".join(notes))


def grade_task(task: Task | None, answer) -> GradeResult:
    """Score ``answer`` against ``task``. Never raises."""
    if task is None:
        return GradeResult(score=0, detail="Unknown task")
    if task.is_mcq:
        return _grade_mcq(task, answer)
    if task.is_freeform:
        return _grade_freeform(task, answer)
    return GradeResult(score=0, detail="Unsupported task type")
