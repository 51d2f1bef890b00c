"""Pydantic models for Horde text queue request bodies."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FAULTED_GENERATION = "faulted"


class HordeModel(BaseModel):
    """Base model for Horde API bodies."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PopRequest(HordeModel):
    """Body of `POST /api/v2/generate/text/pop`."""

    name: str
    models: list[str]
    nsfw: bool = False
    max_length: int
    max_context_length: int
    priority_usernames: list[str] = Field(default_factory=list)
    threads: int = 1
    softprompts: list[str] = Field(default_factory=list)
    bridge_agent: str


class GenerationMetadata(HordeModel):
    """One `gen_metadata` entry attached to a submission."""

    type: str
    value: str
    ref: str | None = None


class SubmitRequest(HordeModel):
    """Body of `POST /api/v2/generate/text/submit`."""

    id: str
    generation: str
    state: Literal["faulted", "csam"] | None = None
    seed: int | None = None
    gen_metadata: list[GenerationMetadata] | None = None

    @classmethod
    def faulted(cls, job_id: str) -> SubmitRequest:
        return cls(id=job_id, generation=FAULTED_GENERATION, state="faulted", seed=-1)

    @classmethod
    def moderation_response(
        cls,
        job_id: str,
        *,
        text: str,
        metadata_ref: str,
    ) -> SubmitRequest:
        return cls(
            id=job_id,
            generation=text,
            state="csam",
            gen_metadata=[GenerationMetadata(type="censorship", value="csam", ref=metadata_ref)],
        )

    @property
    def reward_bearing(self) -> bool:
        """Return whether the queue is expected to grant a reward for this body."""

        return self.state is None


class WorkerInfoUpdate(HordeModel):
    """Body of `PUT /api/v2/workers/{workerId}`."""

    info: str = Field(max_length=500)


__all__ = [
    "FAULTED_GENERATION",
    "GenerationMetadata",
    "PopRequest",
    "SubmitRequest",
    "WorkerInfoUpdate",
]
