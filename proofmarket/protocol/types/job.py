from pydantic import BaseModel
from typing import Optional
from .common import JobStatus, JOB_TRANSITIONS, TERMINAL_STATUSES
from .errors import InvalidJobStatus


class Job(BaseModel):
    id: int                               # sequential, starts at 1
    client: str                           # account that escrowed the payment
    provider: Optional[str] = None        # unset until accepted, never reassigned
    data_ref: str                         # opaque content id of the job inputs (CID)
    escrowed_amount: int                  # minimal units held by the registry
    deadline: int                         # unix seconds, exclusive
    status: JobStatus = JobStatus.CREATED
    result_ref: Optional[str] = None      # content id of the result
    program_id: Optional[str] = None      # hex id of the expected verification circuit
    created_at: int = 0

    max_gas: int = 0                      # compute budget hint forwarded to providers
    public_output_hash: Optional[str] = None
    proof: Optional[str] = None           # hex receipt attached in two-phase submissions
    accepted_at: Optional[int] = None
    completed_at: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: int) -> bool:
        """Deadline is exclusive: now == deadline already counts as expired."""
        return now >= self.deadline

    def require_status(self, *allowed: JobStatus):
        if self.status not in allowed:
            raise InvalidJobStatus(self.id, self.status, allowed[0] if len(allowed) == 1 else allowed)

    def transition(self, to: JobStatus):
        """Moves the job along a legal edge of the state machine."""
        if to not in JOB_TRANSITIONS[self.status]:
            required = [s for s, targets in JOB_TRANSITIONS.items() if to in targets]
            raise InvalidJobStatus(self.id, self.status, required)
        self.status = to
