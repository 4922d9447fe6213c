# mirai_webhook/transport/schemas.py
from pydantic import BaseModel, ConfigDict, Field

from mirai_webhook.core.domain import DispatchOutcome


class NotifyIn(BaseModel):
    title: str
    content: str
    token: str | None = None
    sig: str | None = None


class FailedTargetOut(BaseModel):
    target: int
    reason: str
    code: int


class DispatchResult(BaseModel):
    """Success envelope of a dispatch: ``{target, done, badResult, cost}``."""
    model_config = ConfigDict(populate_by_name=True)

    target: int
    done: int
    bad_result: list[FailedTargetOut] = Field(default_factory=list, alias="badResult")
    cost: int

    @classmethod
    def from_outcome(cls, outcome: DispatchOutcome) -> "DispatchResult":
        return cls(
            target=outcome.total_targets,
            done=outcome.succeeded,
            bad_result=[
                FailedTargetOut(target=f.target, reason=f.reason, code=f.code)
                for f in outcome.failures
            ],
            cost=outcome.elapsed_ms,
        )

    def to_envelope(self) -> dict:
        return self.model_dump(by_alias=True)


class ServiceInfo(BaseModel):
    message: str
    version: str
