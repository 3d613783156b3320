"""
Operator interaction.

The orchestrator blocks on the operator (key insertion, confirmations)
only through the Operator protocol.
"""

from __future__ import annotations

from typing import Callable, Protocol


class Operator(Protocol):
    """Protocol for operator interaction to allow scripting in tests."""

    def wait_for_key(self, message: str) -> None:
        """Block until the operator signals a key is inserted."""
        ...

    def confirm(self, message: str) -> bool:
        """Ask a yes/no question."""
        ...

    def notify(self, message: str) -> None:
        """Show a message."""
        ...


class ConsoleOperator:
    """Operator on the controlling terminal."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ) -> None:
        self._input = input_func
        self._output = output_func

    def wait_for_key(self, message: str) -> None:
        self._input(f"{message} ")

    def confirm(self, message: str) -> bool:
        answer = self._input(f"{message} [y/N] ").strip().lower()
        return answer in ("y", "yes")

    def notify(self, message: str) -> None:
        self._output(message)
