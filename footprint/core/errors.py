"""Domain errors raised by the core and the tracker service."""


class FootprintError(Exception):
    """Base class for expected, user-facing failures."""


class InvalidInputError(FootprintError):
    """A request was missing a field or carried an invalid value."""


class DuplicateGoalError(InvalidInputError):
    """The user already has an open goal of the requested type."""

    def __init__(self, goal_type: str) -> None:
        super().__init__(f"You already have an active {goal_type} goal")
        self.goal_type = goal_type


class NotFoundError(FootprintError):
    """The entity does not exist or belongs to another user."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"{kind} not found")
        self.kind = kind
