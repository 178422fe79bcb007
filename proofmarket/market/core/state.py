from typing import Any, Dict, List, Optional, Set, Tuple
import json
import logging
from pydantic import BaseModel
from ...protocol.types.job import Job
from ...protocol.types.provider import ProviderAccount
from ...protocol.types.common import Role
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)


class MarketParams(BaseModel):
    """Admin-controlled parameters (persisted)."""
    min_provider_stake: int
    slash_recipient: Optional[str] = None
    verifier_enabled: bool = True
    stake_ledger_enabled: bool = True


class MarketState:
    """
    Transactional store for the marketplace.

    Records are cached in memory and written to the DB on persist(). A call
    works on a clone(); committing means persisting the clone and swapping it
    in, rolling back means dropping it.
    """

    def __init__(self, db: StorageDB, params: MarketParams,
                 providers: Dict[str, ProviderAccount] = None,
                 jobs: Dict[int, Job] = None,
                 roles: Dict[Role, Set[str]] = None,
                 nonces: Dict[str, int] = None,
                 counters: Dict[str, int] = None,
                 next_job_id: int = 1):
        self.db = db
        self.params = params
        # Cache: "<vault>:<address>" -> ProviderAccount
        self._providers: Dict[str, ProviderAccount] = providers if providers is not None else {}
        # Cache: job id -> Job
        self._jobs: Dict[int, Job] = jobs if jobs is not None else {}
        self._roles: Dict[Role, Set[str]] = roles if roles is not None else {r: set() for r in Role}
        self._nonces: Dict[str, int] = nonces if nonces is not None else {}
        self._counters: Dict[str, int] = counters if counters is not None else {}
        self.next_job_id = next_job_id

        # Keys touched since the last persist
        self._dirty: Set[str] = set()
        # Events raised by the current call, published only on commit
        self.pending_events: List[Tuple[str, Dict[str, Any]]] = []

        # Live wiring, not persisted. The node wires these at startup.
        self.verifier = None
        self.stake_ledger = None

    @staticmethod
    def load(db: StorageDB, default_params: MarketParams) -> 'MarketState':
        """Loads params, roles and counters from DB (providers and jobs load lazily)."""
        raw = db.get_state("param:market")
        params = MarketParams.model_validate_json(raw) if raw else default_params

        roles = {r: set() for r in Role}
        for key, value in db.get_state_by_prefix("role:").items():
            roles[Role(key.split(":", 1)[1])] = set(json.loads(value))

        counters = {k.split(":", 2)[2]: int(v) for k, v in db.get_state_by_prefix("meta:counter:").items()}

        next_id = db.get_state("meta:next_job_id")
        state = MarketState(db, params, roles=roles, counters=counters,
                            next_job_id=int(next_id) if next_id else 1)
        if not raw:
            state._dirty.add("param:market")
        return state

    def clone(self) -> 'MarketState':
        """Creates a copy of the state for one call."""
        cloned = MarketState(
            self.db,
            self.params.model_copy(),
            providers={k: v.model_copy() for k, v in self._providers.items()},
            jobs={k: v.model_copy() for k, v in self._jobs.items()},
            roles={r: set(members) for r, members in self._roles.items()},
            nonces=dict(self._nonces),
            counters=dict(self._counters),
            next_job_id=self.next_job_id,
        )
        cloned._dirty = set(self._dirty)
        cloned.verifier = self.verifier
        cloned.stake_ledger = self.stake_ledger
        return cloned

    def absorb(self, other: 'MarketState'):
        """Takes over the records of a clone that ran a nested call on top of this state."""
        self.params = other.params
        self._providers = other._providers
        self._jobs = other._jobs
        self._roles = other._roles
        self._nonces = other._nonces
        self._counters = other._counters
        self.next_job_id = other.next_job_id
        self._dirty = other._dirty
        self.pending_events.extend(other.pending_events)
        self.verifier = other.verifier
        self.stake_ledger = other.stake_ledger

    # --- Providers ---
    def get_provider(self, vault: str, address: str) -> Optional[ProviderAccount]:
        key = f"{vault}:{address}"
        if key in self._providers:
            return self._providers[key]

        raw_json = self.db.get_state(f"prov:{key}")
        if raw_json:
            acc = ProviderAccount.model_validate_json(raw_json)
            self._providers[key] = acc
            return acc
        return None

    def set_provider(self, vault: str, account: ProviderAccount):
        key = f"{vault}:{account.address}"
        self._providers[key] = account
        self._dirty.add(f"prov:{key}")

    def get_all_providers(self, vault: str) -> List[ProviderAccount]:
        final: Dict[str, ProviderAccount] = {}
        for k, v in self.db.get_state_by_prefix(f"prov:{vault}:").items():
            final[k[len("prov:"):]] = ProviderAccount.model_validate_json(v)
        for key, acc in self._providers.items():
            if key.startswith(f"{vault}:"):
                final[key] = acc
        return list(final.values())

    # --- Jobs ---
    def get_job(self, job_id: int) -> Optional[Job]:
        if job_id in self._jobs:
            return self._jobs[job_id]

        raw_json = self.db.get_state(f"job:{job_id}")
        if raw_json:
            job = Job.model_validate_json(raw_json)
            self._jobs[job_id] = job
            return job
        return None

    def set_job(self, job: Job):
        self._jobs[job.id] = job
        self._dirty.add(f"job:{job.id}")

    def allocate_job_id(self) -> int:
        job_id = self.next_job_id
        self.next_job_id += 1
        self._dirty.add("meta:next_job_id")
        return job_id

    def get_all_jobs(self) -> List[Job]:
        final: Dict[int, Job] = {}
        for _, v in self.db.get_state_by_prefix("job:").items():
            job = Job.model_validate_json(v)
            final[job.id] = job
        for job_id, job in self._jobs.items():
            final[job_id] = job
        return [final[k] for k in sorted(final)]

    # --- Roles ---
    def has_role(self, role: Role, account: str) -> bool:
        return account in self._roles.get(role, set())

    def role_members(self, role: Role) -> List[str]:
        return sorted(self._roles.get(role, set()))

    def add_role_member(self, role: Role, account: str) -> bool:
        members = self._roles.setdefault(role, set())
        if account in members:
            return False
        members.add(account)
        self._dirty.add(f"role:{role.value}")
        return True

    def remove_role_member(self, role: Role, account: str) -> bool:
        members = self._roles.setdefault(role, set())
        if account not in members:
            return False
        members.discard(account)
        self._dirty.add(f"role:{role.value}")
        return True

    # --- Params ---
    def update_params(self, **changes):
        self.params = self.params.model_copy(update=changes)
        self._dirty.add("param:market")

    # --- Nonces ---
    def get_nonce(self, address: str) -> int:
        if address in self._nonces:
            return self._nonces[address]
        raw = self.db.get_state(f"nonce:{address}")
        nonce = int(raw) if raw else 0
        self._nonces[address] = nonce
        return nonce

    def bump_nonce(self, address: str):
        self._nonces[address] = self.get_nonce(address) + 1
        self._dirty.add(f"nonce:{address}")

    # --- Accounting counters ---
    def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def add_counter(self, name: str, amount: int):
        self._counters[name] = self._counters.get(name, 0) + amount
        self._dirty.add(f"meta:counter:{name}")

    # --- Events ---
    def emit(self, event_type, **data):
        """Buffers an event; it is published only if the call commits."""
        self.pending_events.append((getattr(event_type, "value", event_type), data))

    def drain_events(self) -> List[Tuple[str, Dict[str, Any]]]:
        events, self.pending_events = self.pending_events, []
        return events

    def persist(self, call_id: str = "", events: List[Tuple[str, Dict[str, Any]]] = (), timestamp: int = 0,
                extra_items: Optional[Dict[str, Optional[str]]] = None):
        """Writes dirty records, extra_items (token balances) and the call's events to DB in one batch."""
        items: Dict[str, Optional[str]] = dict(extra_items or {})
        for key in self._dirty:
            if key.startswith("prov:"):
                items[key] = self._providers[key[len("prov:"):]].model_dump_json()
            elif key.startswith("job:"):
                items[key] = self._jobs[int(key[len("job:"):])].model_dump_json()
            elif key.startswith("role:"):
                role = Role(key[len("role:"):])
                items[key] = json.dumps(sorted(self._roles[role]))
            elif key.startswith("nonce:"):
                items[key] = str(self._nonces[key[len("nonce:"):]])
            elif key.startswith("meta:counter:"):
                items[key] = str(self._counters[key[len("meta:counter:"):]])
            elif key == "meta:next_job_id":
                items[key] = str(self.next_job_id)
            elif key == "param:market":
                items[key] = self.params.model_dump_json()

        self.db.write_batch(items, [(call_id, t, d, timestamp) for t, d in events])
        self._dirty.clear()
        logger.debug(f"Persisted {len(items)} records, {len(events)} events")
