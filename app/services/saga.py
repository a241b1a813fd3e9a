"""
Upload-then-link without a transaction.

A `Saga` runs async steps in order. When a step fails, the compensations of
the steps that already completed run in reverse order, then `SagaFailed` is
raised carrying the failed step, the cause and any compensation errors.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from services.exceptions import ArchiveDomainError

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]
Compensation = Callable[[Any], Awaitable[None]]


class SagaFailed(ArchiveDomainError):
    """A saga step failed; completed steps have been compensated."""

    def __init__(self, step: str, cause: BaseException, compensation_errors: List[BaseException]):
        self.step = step
        self.cause = cause
        self.compensation_errors = compensation_errors
        message = f"Step '{step}' failed: {cause}"
        if compensation_errors:
            message += f" ({len(compensation_errors)} compensation(s) also failed)"
        super().__init__(message)

    @property
    def compensated(self) -> bool:
        return not self.compensation_errors


@dataclass
class _Step:
    name: str
    action: Action
    compensation: Optional[Compensation] = None


@dataclass
class Saga:
    name: str
    context: dict = field(default_factory=dict)
    _steps: List[_Step] = field(default_factory=list)

    def step(self, name: str, action: Action, compensation: Optional[Compensation] = None) -> "Saga":
        self._steps.append(_Step(name, action, compensation))
        return self

    async def run(self) -> List[Any]:
        """Results of every step, in order"""
        completed: List[tuple] = []
        for step in self._steps:
            try:
                result = await step.action()
            except Exception as e:
                errors = await self._compensate(completed)
                raise SagaFailed(step.name, e, errors) from e
            completed.append((step, result))
        return [result for _, result in completed]

    async def _compensate(self, completed: List[tuple]) -> List[BaseException]:
        errors: List[BaseException] = []
        for step, result in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation(result)
                logger.info("Saga step compensated", extra={"saga": self.name, "step": step.name, **self.context})
            except Exception as e:
                logger.error(
                    "Saga compensation failed",
                    extra={"saga": self.name, "step": step.name, "error": str(e), **self.context},
                )
                errors.append(e)
        return errors


async def upload_then_link(
    storage,
    bucket: str,
    path: str,
    data: bytes,
    content_type: str,
    link: Callable[[], Awaitable[Any]],
    context: Optional[dict] = None,
) -> Any:
    """
    Uploads a blob, then inserts the row that points at it. If the insert
    fails the blob is deleted again. Returns whatever `link` returned.
    """
    async def upload():
        await storage.upload(bucket, path, data, content_type)
        return path

    async def delete(_):
        await storage.delete(bucket, path)

    saga = Saga(name="upload_then_link", context={"bucket": bucket, "path": path, **(context or {})})
    saga.step("upload", upload, compensation=delete)
    saga.step("link", link)
    _, row = await saga.run()
    return row
