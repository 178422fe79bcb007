from pydantic import BaseModel


class ProviderAccount(BaseModel):
    address: str
    stake_amount: int = 0       # collateral held in the stake vault
    jobs_done: int = 0          # every rating, success or not
    successful_jobs: int = 0    # <= jobs_done
    exists: bool = False        # set on first stake, never cleared

    @property
    def success_rate(self) -> float:
        if self.jobs_done == 0:
            return 0.0
        return self.successful_jobs / self.jobs_done
