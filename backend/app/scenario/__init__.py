from app.scenario.grader import GradeResult, grade_task
from app.scenario.loader import ScenarioCatalog, load_scenario
from app.scenario.matcher import first_match, match_when
from app.scenario.models import Scenario, Step, Task

__all__ = [
    "GradeResult",
    "grade_task",
    "ScenarioCatalog",
    "load_scenario",
    "first_match",
    "match_when",
    "Scenario",
    "Step",
    "Task",
]
