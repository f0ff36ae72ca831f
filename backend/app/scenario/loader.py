from __future__ import annotations

import copy
import json
import logging
from pathlib import Path

from app.errors import ScenarioNotFoundError, ScenarioValidationError
from app.scenario.models import (
    TERMINAL_INDEX,
    Branch,
    ChannelSpec,
    Predicate,
    RubricRule,
    Scenario,
    Step,
    Task,
    Utterance,
    WaitFor,
    compile_pattern,
)

logger = logging.getLogger("scenario.loader")

DEFAULT_SCENARIO_FILES: dict[str, dict[str, str]] = {
    "sga": {
        "swe": "sga/sga-software-engineer.json",
        "de": "sga/sga-data-engineer.json",
        "ml": "sga/sga-ml-engineer.json",
    },
}


class _Problems:
    def __init__(self, strict: bool):
        self.strict = strict

    def fatal(self, message: str) -> None:
        raise ScenarioValidationError(message)

    def report(self, message: str) -> None:
        if self.strict:
            raise ScenarioValidationError(message)
        logger.warning("Scenario authoring hazard | %s", message)


def _utterances(raw_list, where: str, problems: _Problems) -> list[Utterance]:
    if raw_list is None:
        return []
    if not isinstance(raw_list, list):
        problems.fatal(f"{where}: 'say' must be a list")
    return [Utterance.from_dict(item) for item in raw_list if isinstance(item, dict)]


def _predicate(raw, where: str, problems: _Problems) -> Predicate:
    if raw is not None and not isinstance(raw, dict):
        problems.fatal(f"{where}: 'when' must be an object")
    predicate = Predicate.from_dict(raw)
    if predicate.error:
        problems.report(f"{where}: invalid regex {predicate.regex!r} ({predicate.error})")
    return predicate


def _parse_step(raw: dict, channel: str, position: int, problems: _Problems) -> Step:
    step_id = str(raw.get("id") or "").strip()
    if not step_id:
        problems.fatal(f"script[{channel}][{position}]: step is missing an id")
    where = f"script[{channel}].{step_id}"

    on: dict[str, list[Branch]] = {}
    raw_on = raw.get("on") or {}
    if not isinstance(raw_on, dict):
        problems.fatal(f"{where}: 'on' must be an object")
    for event_key, raw_branches in raw_on.items():
        if not isinstance(raw_branches, list):
            problems.fatal(f"{where}.on[{event_key}]: branches must be a list")
        branches: list[Branch] = []
        for branch_pos, raw_branch in enumerate(raw_branches):
            branch_where = f"{where}.on[{event_key}][{branch_pos}]"
            branch_data = dict(raw_branch or {})
            next_id = branch_data.get("next")
            branches.append(
                Branch(
                    when=_predicate(branch_data.get("when"), branch_where, problems),
                    say=_utterances(branch_data.get("say"), branch_where, problems),
                    next_id=str(next_id) if next_id else None,
                )
            )
        on[str(event_key)] = branches

    wait_for = None
    raw_wait = raw.get("waitFor")
    if isinstance(raw_wait, dict) and raw_wait.get("type"):
        task_id = raw_wait.get("taskId")
        wait_for = WaitFor(type=str(raw_wait["type"]), task_id=str(task_id) if task_id else None)

    flow = raw.get("conversationFlow")
    next_id = raw.get("next")
    return Step(
        id=step_id,
        say=_utterances(raw.get("say"), where, problems),
        on=on,
        wait_for=wait_for,
        next_id=str(next_id) if next_id else None,
        conversation_flow=dict(flow) if isinstance(flow, dict) else None,
    )


def _rubric_rule(raw: dict, where: str, problems: _Problems) -> RubricRule:
    match = raw.get("match") if isinstance(raw.get("match"), dict) else raw
    rule = RubricRule(
        regex=str(match.get("regex") or ""),
        flags=str(match.get("flags") or ""),
        score=float(raw.get("score") or 0),
        why=str(raw.get("why") or raw.get("rationale") or ""),
    )
    if not rule.regex:
        # a rule without a pattern never scores
        rule.error = "missing regex"
        problems.report(f"{where}: rubric rule has no regex")
        return rule
    rule.compiled, rule.error = compile_pattern(rule.regex, rule.flags)
    if rule.error:
        problems.report(f"{where}: invalid rubric regex {rule.regex!r} ({rule.error})")
    return rule


def _parse_task(raw: dict, problems: _Problems) -> Task:
    task_id = str(raw.get("id") or "").strip()
    if not task_id:
        problems.fatal("tasks: task is missing an id")
    answer = raw.get("answer") if isinstance(raw.get("answer"), dict) else {}
    rubric_raw = answer.get("rubric", raw.get("rubric")) or []
    max_score = answer.get("maxScore", raw.get("maxScore"))
    correct = raw.get("correct")
    return Task(
        id=task_id,
        type=str(raw.get("type") or ""),
        correct=correct,
        score=raw.get("score") or 0,
        answer_kind=str(answer.get("kind")) if answer.get("kind") else None,
        rubric=[
            _rubric_rule(rule, f"tasks.{task_id}.rubric[{pos}]", problems)
            for pos, rule in enumerate(rubric_raw)
            if isinstance(rule, dict)
        ],
        max_score=float(max_score) if max_score is not None else None,
        raw=copy.deepcopy(raw),
    )


def _resolve(scenario: Scenario, channel: str, step_id: str | None, where: str, problems: _Problems) -> int:
    index = scenario.index_of(channel, step_id)
    if step_id and index == TERMINAL_INDEX:
        problems.report(f"{where}: next step {step_id!r} does not exist")
    return index


def load_scenario(data: dict, strict: bool = True) -> Scenario:
    """Build a runnable Scenario from its JSON definition.

    Step ``next`` ids are resolved to indices here. In strict mode a dangling
    ``next`` or an invalid pattern raises ``ScenarioValidationError``;
    otherwise the reference becomes the terminal index and is logged.
    """
    if not isinstance(data, dict):
        raise ScenarioValidationError("Scenario must be a JSON object")
    problems = _Problems(strict)
    scenario = Scenario(meta={k: copy.deepcopy(v) for k, v in data.items() if k not in {"channels", "script", "tasks"}})

    for raw_channel in data.get("channels") or []:
        name = str((raw_channel or {}).get("name") or "").strip()
        if not name:
            problems.fatal("channels: channel is missing a name")
        if any(existing.name == name for existing in scenario.channels):
            problems.fatal(f"channels: duplicate channel {name!r}")
        scenario.channels.append(
            ChannelSpec(
                name=name,
                topic=str(raw_channel.get("topic") or ""),
                seed=_utterances(raw_channel.get("seed"), f"channels.{name}.seed", problems),
            )
        )

    for raw_task in data.get("tasks") or []:
        task = _parse_task(dict(raw_task or {}), problems)
        if task.id in scenario.tasks:
            problems.fatal(f"tasks: duplicate task {task.id!r}")
        scenario.tasks[task.id] = task

    declared = {channel.name for channel in scenario.channels}
    raw_script = data.get("script") or {}
    if not isinstance(raw_script, dict):
        problems.fatal("script must be an object keyed by channel name")
    for channel, raw_steps in raw_script.items():
        if channel not in declared:
            problems.report(f"script[{channel}]: channel is not declared")
        steps = [_parse_step(dict(raw or {}), channel, pos, problems) for pos, raw in enumerate(raw_steps or [])]
        index: dict[str, int] = {}
        for pos, step in enumerate(steps):
            if step.id in index:
                problems.fatal(f"script[{channel}]: duplicate step id {step.id!r}")
            index[step.id] = pos
        scenario.script[channel] = steps
        scenario.step_index[channel] = index

    for channel, steps in scenario.script.items():
        for step in steps:
            where = f"script[{channel}].{step.id}"
            step.next_index = _resolve(scenario, channel, step.next_id, where, problems)
            for event_key, branches in step.on.items():
                for pos, branch in enumerate(branches):
                    branch.next_index = _resolve(
                        scenario, channel, branch.next_id, f"{where}.on[{event_key}][{pos}]", problems
                    )
            for utterance in step.utterances():
                if not utterance.task_id:
                    continue
                if utterance.task_id not in scenario.tasks:
                    problems.report(f"{where}: unknown task {utterance.task_id!r}")
                    continue
                referencing = scenario.task_channels.setdefault(utterance.task_id, [])
                if channel not in referencing:
                    referencing.append(channel)

    return scenario


class ScenarioCatalog:
    """Maps org/role pairs onto scenario files under ``templates_dir``."""

    def __init__(self, templates_dir: Path | str, files: dict[str, dict[str, str]] | None = None, strict: bool = True):
        self.templates_dir = Path(templates_dir)
        self.files = files if files is not None else DEFAULT_SCENARIO_FILES
        self.strict = strict

    def path_for(self, org: str, role: str) -> Path:
        relative = self.files.get(str(org or "").lower(), {}).get(str(role or "").lower())
        if not relative:
            raise ScenarioNotFoundError(org, role)
        return self.templates_dir / relative

    def resolve(self, org: str, role: str) -> Scenario:
        path = self.path_for(org, role)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ScenarioNotFoundError(org, role, reason=str(exc)) from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ScenarioValidationError(f"{path.name}: invalid JSON ({exc})") from exc
        return load_scenario(data, strict=self.strict)
