from app.scenario.grader import grade_task
from app.scenario.models import Task


def test_mcq_exact_choice_scores_configured_points(ops_scenario):
    task = ops_scenario.task("t-mcq")
    assert grade_task(task, {"choice": "B"}).score == 5
    assert grade_task(task, {"choice": "A"}).score == 0
    assert grade_task(task, {"choice": "b"}).score == 0
    assert grade_task(task, {}).detail == "Correct: B"


def test_freeform_sums_matching_rules_and_clamps(ops_scenario):
    task = ops_scenario.task("t-free")

    none = grade_task(task, {"text": "restart the server"})
    assert none.score == 0
    assert none.detail == ""

    one = grade_task(task, {"text": "  add an INDEX  "})
    assert one.score == 4
    assert one.detail == "index"

    both = grade_task(task, {"text": "add an index and a cache"})
    assert both.score == 6
    assert both.detail == "index; cache"


def test_freeform_skips_malformed_rubric_rules():
    from app.scenario.loader import load_scenario

    scenario = load_scenario(
        {
            "channels": [],
            "tasks": [
                {
                    "id": "t",
                    "type": "freeform",
                    "rubric": [
                        {"regex": "([bad", "score": 9},
                        {"regex": "good", "score": 2, "rationale": "good"},
                    ],
                }
            ],
        },
        strict=False,
    )
    result = grade_task(scenario.task("t"), {"text": "good answer"})
    assert result.score == 2
    assert result.detail == "good"



def test_rubric_rule_without_pattern_never_scores():
    from app.scenario.loader import load_scenario

    scenario = load_scenario(
        {
            "channels": [],
            "tasks": [
                {
                    "id": "t",
                    "type": "freeform",
                    "rubric": [
                        {"score": 3, "why": "nothing"},
                        {"match": {"regex": ""}, "score": 4, "why": "blank"},
                    ],
                }
            ],
        },
        strict=False,
    )
    result = grade_task(scenario.task("t"), {"text": "completely unrelated"})
    assert result.score == 0
    assert result.detail == ""

def test_unknown_task_and_unsupported_type_grade_zero():
    assert grade_task(None, {"choice": "A"}).score == 0
    assert grade_task(None, {"choice": "A"}).detail == "Unknown task"

    essay = Task(id="t", type="essay")
    result = grade_task(essay, {"text": "hello"})
    assert result.score == 0
    assert result.detail == "Unsupported task type"


def test_grading_tolerates_non_dict_answers(ops_scenario):
    assert grade_task(ops_scenario.task("t-mcq"), "B").score == 0
    assert grade_task(ops_scenario.task("t-free"), None).score == 0
