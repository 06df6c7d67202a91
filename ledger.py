"""Election ledger: candidate registry, vote tallies and their audit trail.

Every account may vote at most once, and only for a candidate the
administrator has registered. Candidates are keyed by the SHA-256 digest
of their name. Reads are lenient (``votes_for`` of an unknown name is 0)
while writes are strict (voting for that same name raises
``UnknownCandidate``); callers rely on this asymmetry.
"""
import collections
import hashlib
import threading

import structlog

from blockchain import EventLog
from data_models import Candidate, CandidateAdded, Voted, VoterRecord
from errors import (
    AlreadyRegistered, AlreadyVoted, ChainIntegrityError, Unauthorized, UnknownCandidate
)

log = structlog.get_logger(__name__)


def derive_identifier(name):
    """Fixed-width candidate identifier: hex SHA-256 of the UTF-8 name."""
    return hashlib.sha256(name.encode('utf-8')).hexdigest()


class AccessController:
    def __init__(self, administrator):
        self._administrator = administrator

    @property
    def administrator(self):
        return self._administrator

    def require_administrator(self, caller):
        if caller != self._administrator:
            raise Unauthorized(caller)


class CandidateRegistry:
    def __init__(self):
        self._candidates = {}

    def __iter__(self):
        return iter(self._candidates.values())

    def __len__(self):
        return len(self._candidates)

    def is_registered(self, identifier):
        return identifier in self._candidates

    def identifier_for(self, name):
        return derive_identifier(name)

    def check_new(self, name):
        identifier = derive_identifier(name)
        if identifier in self._candidates:
            raise AlreadyRegistered(name, identifier)
        return identifier

    def add(self, name, identifier):
        self._candidates[identifier] = Candidate(name, identifier)


class VoteLedger:
    def __init__(self, registry):
        self.registry = registry
        self._voters = {}
        self._tally = collections.Counter()

    def has_voted(self, account):
        record = self._voters.get(account)
        return record is not None and record.has_voted

    def votes_for(self, name):
        return self._tally[derive_identifier(name)]

    def check_vote(self, account, name):
        identifier = derive_identifier(name)
        if self.has_voted(account):
            raise AlreadyVoted(account)
        if not self.registry.is_registered(identifier):
            raise UnknownCandidate(name, identifier)
        return identifier

    def record(self, account, identifier):
        self._voters[account] = VoterRecord(account)
        self._tally[identifier] += 1
        return self._tally[identifier]

    def voters(self):
        return list(self._voters.values())

    def total(self):
        return sum(self._tally.values())


class Election:
    """The single owned state of one election.

    Mutations are serialized by a lock and commit in two steps: the event
    is appended to the log first, then the in-memory state is updated. A
    failed append therefore leaves the ledger untouched. Reads take the
    same lock, so the log and the tallies are always observed together.
    """

    def __init__(self, administrator, event_log):
        self.event_log = event_log
        self.access = AccessController(administrator)
        self.registry = CandidateRegistry()
        self.votes = VoteLedger(self.registry)
        self._lock = threading.RLock()

    @classmethod
    def create(cls, administrator, event_log=None):
        """Open a new election with ``administrator`` fixed for its lifetime."""
        event_log = event_log if event_log is not None else EventLog()
        event_log.create_genesis_block(administrator)
        return cls(administrator, event_log)

    @classmethod
    def from_log(cls, event_log):
        """Rebuild an election by replaying a verified event log."""
        event_log.verify()
        if event_log.administrator is None:
            raise ChainIntegrityError("event log has no genesis block")
        election = cls(event_log.administrator, event_log)
        try:
            for event in event_log.replay():
                election._apply(event)
        except (ValueError, TypeError, KeyError, AttributeError) as err:
            raise ChainIntegrityError(f"event log holds a malformed record: {err}") from err
        log.info(
            "election_replayed",
            candidates=len(election.registry),
            votes=election.total_votes(),
        )
        return election

    @classmethod
    def open(cls, path):
        return cls.from_log(EventLog(path))

    def _apply(self, event):
        try:
            if isinstance(event, CandidateAdded):
                identifier = self.registry.check_new(event.name)
                if identifier != event.identifier:
                    raise ChainIntegrityError(f"identifier mismatch for candidate {event.name!r}")
                self.registry.add(event.name, identifier)
            elif isinstance(event, Voted):
                identifier = self.votes.check_vote(event.voter, event.name)
                total = self.votes.record(event.voter, identifier)
                if total != event.total:
                    raise ChainIntegrityError(
                        f"running total for {event.name!r} is {total}, log says {event.total}"
                    )
            else:
                raise ChainIntegrityError(f"unexpected event in log: {event.to_dict()!r}")
        except (AlreadyRegistered, AlreadyVoted, UnknownCandidate) as err:
            raise ChainIntegrityError(f"event log does not replay: {err}") from err

    # --- Mutations ---

    def register(self, caller, name):
        with self._lock:
            try:
                self.access.require_administrator(caller)
                identifier = self.registry.check_new(name)
            except (Unauthorized, AlreadyRegistered) as err:
                log.warning("registration_rejected", caller=caller, name=name, reason=type(err).__name__)
                raise
            event = CandidateAdded(name, identifier)
            self.event_log.append(event)
            self.registry.add(name, identifier)
        log.info("candidate_added", name=name, identifier=identifier)
        return event

    def cast_vote(self, voter, name):
        with self._lock:
            try:
                identifier = self.votes.check_vote(voter, name)
            except (AlreadyVoted, UnknownCandidate) as err:
                log.warning("vote_rejected", voter=voter, name=name, reason=type(err).__name__)
                raise
            event = Voted(voter, name, self.votes.votes_for(name) + 1)
            self.event_log.append(event)
            self.votes.record(voter, identifier)
        log.info("vote_cast", voter=voter, name=name, total=event.total)
        return event

    # --- Reads ---

    def administrator(self):
        return self.access.administrator

    def identifier_for(self, name):
        return self.registry.identifier_for(name)

    def is_registered(self, identifier):
        with self._lock:
            return self.registry.is_registered(identifier)

    def votes_for(self, name):
        with self._lock:
            return self.votes.votes_for(name)

    def has_voted(self, account):
        with self._lock:
            return self.votes.has_voted(account)

    def candidates(self):
        with self._lock:
            return [c.name for c in self.registry]

    def tallies(self):
        with self._lock:
            return {c.name: self.votes.votes_for(c.name) for c in self.registry}

    def voters(self):
        with self._lock:
            return self.votes.voters()

    def total_votes(self):
        with self._lock:
            return self.votes.total()

    def events(self):
        with self._lock:
            return list(self.event_log.replay())
