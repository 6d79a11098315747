from __future__ import annotations


class EditError(Exception):
    """Base class for rejected edit commands. Prior state is always kept."""


class NoImageError(EditError):
    def __init__(self, action: str = "edit"):
        super().__init__(f"Cannot {action}: no image has been set")
        self.action = action


class InvalidCropError(EditError, ValueError):
    pass
