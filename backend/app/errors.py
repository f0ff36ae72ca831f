class SimulationError(Exception):
    pass


class ScenarioValidationError(SimulationError):
    """Scenario input that cannot be turned into a runnable script."""


class ScenarioNotFoundError(ScenarioValidationError):
    def __init__(self, org: str, role: str, reason: str = ""):
        self.org = org
        self.role = role
        message = f"No scenario for {org}/{role}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
