"""
Minimal saga runner.

A saga is an ordered list of named steps. Each step may declare an undo
action. When a step fails, the undo actions of the steps that already
completed run in reverse order, then the original error is re-raised.
Undo failures are logged and never replace the original error.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

SagaContext = Dict[str, Any]
StepAction = Callable[[SagaContext], Awaitable[Any]]


class SagaStep:
    """A named step with an optional compensating action."""

    def __init__(self, name: str, action: StepAction, undo: Optional[StepAction] = None):
        self.name = name
        self.action = action
        self.undo = undo


class Saga:
    """Runs steps in order and compensates completed steps on failure."""

    def __init__(self, name: str, steps: Optional[List[SagaStep]] = None):
        self.name = name
        self.steps: List[SagaStep] = list(steps or [])
        self.completed: List[str] = []

    def step(self, name: str, action: StepAction, undo: Optional[StepAction] = None) -> "Saga":
        self.steps.append(SagaStep(name, action, undo))
        return self

    async def run(self, context: Optional[SagaContext] = None) -> SagaContext:
        """
        Execute all steps, storing each result in the context under the step name.

        Returns:
            The context after every step completed
        """
        context = context if context is not None else {}
        done: List[SagaStep] = []

        for step in self.steps:
            try:
                context[step.name] = await step.action(context)
            except Exception as error:
                logger.error(
                    f"Saga '{self.name}' failed at step '{step.name}' after "
                    f"{[s.name for s in done]}: {error}"
                )
                await self._compensate(done, context)
                raise
            done.append(step)
            self.completed.append(step.name)

        return context

    async def _compensate(self, done: List[SagaStep], context: SagaContext) -> None:
        for step in reversed(done):
            if step.undo is None:
                continue
            logger.warning(f"+-> Compensating step '{step.name}' of saga '{self.name}'")
            try:
                await step.undo(context)
            except Exception as e:
                logger.error(
                    f"+-> Compensation of step '{step.name}' in saga '{self.name}' failed: {e}"
                )
