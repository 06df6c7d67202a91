import sys
import os
import json
import threading

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
import blockchain
import ledger
from blockchain import EventLog
from data_models import CandidateAdded, Voted
from errors import (
    AlreadyRegistered, AlreadyVoted, ChainIntegrityError, Unauthorized, UnknownCandidate
)

ADMIN = 'admin-account'


@pytest.fixture
def election():
    return ledger.Election.create(ADMIN)


@pytest.fixture
def alice_bob(election):
    election.register(ADMIN, 'Alice')
    election.register(ADMIN, 'Bob')
    return election


@pytest.mark.parametrize('name', ['Alice', 'alice', '', 'Žofie Nováková', 'x' * 1000])
def test_derive_deterministic_fixed_width(name):
    first = ledger.derive_identifier(name)
    assert first == ledger.derive_identifier(name)
    assert first == ledger.Election.create(ADMIN).identifier_for(name)
    assert len(first) == 64


def test_derive_case_sensitive():
    assert ledger.derive_identifier('Alice') != ledger.derive_identifier('alice')


def test_derive_no_collisions():
    names = [f'candidate-{i}' for i in range(20000)] + [chr(c) for c in range(32, 127)]
    assert len({ledger.derive_identifier(n) for n in names}) == len(names)


def test_scenario(alice_bob):
    election = alice_bob
    assert election.votes_for('Alice') == 0
    assert election.votes_for('Bob') == 0
    election.cast_vote('A', 'Alice')
    assert election.votes_for('Alice') == 1
    with pytest.raises(AlreadyVoted):
        election.cast_vote('A', 'Bob')
    assert election.votes_for('Bob') == 0
    with pytest.raises(UnknownCandidate):
        election.cast_vote('B', 'Charlie')
    election.cast_vote('B', 'Bob')
    assert election.votes_for('Bob') == 1
    assert election.votes_for('Charlie') == 0


def test_register_emits_event(election):
    event = election.register(ADMIN, 'Alice')
    assert event == CandidateAdded('Alice', ledger.derive_identifier('Alice'))
    assert election.events() == [event]
    assert election.is_registered(ledger.derive_identifier('Alice'))
    assert election.candidates() == ['Alice']


def test_register_twice_rejected(election):
    election.register(ADMIN, 'Alice')
    election.cast_vote('A', 'Alice')
    with pytest.raises(AlreadyRegistered) as excinfo:
        election.register(ADMIN, 'Alice')
    assert excinfo.value.identifier == ledger.derive_identifier('Alice')
    assert election.votes_for('Alice') == 1
    assert len(election.events()) == 2


@pytest.mark.parametrize('caller', ['A', 'ADMIN-ACCOUNT', '', None])
def test_register_requires_administrator(election, caller):
    with pytest.raises(Unauthorized):
        election.register(caller, 'Alice')
    assert election.events() == []
    assert not election.is_registered(ledger.derive_identifier('Alice'))


def test_unauthorized_checked_before_duplicate(election):
    election.register(ADMIN, 'Alice')
    with pytest.raises(Unauthorized):
        election.register('A', 'Alice')


def test_administrator_fixed(election):
    assert election.administrator() == ADMIN


def test_vote_event_carries_new_total(alice_bob):
    assert alice_bob.cast_vote('A', 'Alice') == Voted('A', 'Alice', 1)
    assert alice_bob.cast_vote('B', 'Alice') == Voted('B', 'Alice', 2)
    assert alice_bob.events()[-1] == Voted('B', 'Alice', 2)


def test_vote_exclusive(alice_bob):
    alice_bob.cast_vote('A', 'Alice')
    before = alice_bob.tallies()
    for name in ['Alice', 'Bob', 'Charlie']:
        with pytest.raises(AlreadyVoted):
            alice_bob.cast_vote('A', name)
    assert alice_bob.tallies() == before
    assert alice_bob.has_voted('A')


def test_already_voted_checked_before_unknown(alice_bob):
    alice_bob.cast_vote('A', 'Alice')
    with pytest.raises(AlreadyVoted):
        alice_bob.cast_vote('A', 'Nobody')


def test_unknown_candidate_no_side_effects(alice_bob):
    with pytest.raises(UnknownCandidate):
        alice_bob.cast_vote(ADMIN, 'Charlie')
    assert not alice_bob.has_voted(ADMIN)
    assert alice_bob.total_votes() == 0
    assert len(alice_bob.events()) == 2


def test_has_voted_unknown_account(election):
    assert not election.has_voted('never-seen')


def test_is_registered_unknown(election):
    assert not election.is_registered('not-a-digest')


def test_tally_sums(alice_bob):
    accounts = [f'voter-{i}' for i in range(30)]
    for i, account in enumerate(accounts):
        alice_bob.cast_vote(account, 'Alice' if i % 3 else 'Bob')
    assert alice_bob.votes_for('Alice') == 20
    assert alice_bob.votes_for('Bob') == 10
    assert sum(alice_bob.tallies().values()) == alice_bob.total_votes() == 30


def test_failed_append_leaves_state(alice_bob, monkeypatch):
    def broken_append(event):
        raise OSError('disk full')
    monkeypatch.setattr(alice_bob.event_log, 'append', broken_append)
    with pytest.raises(OSError):
        alice_bob.cast_vote('A', 'Alice')
    with pytest.raises(OSError):
        alice_bob.register(ADMIN, 'Charlie')
    assert not alice_bob.has_voted('A')
    assert alice_bob.votes_for('Alice') == 0
    assert alice_bob.candidates() == ['Alice', 'Bob']


def test_concurrent_votes(alice_bob):
    errors = []

    def vote(account):
        try:
            alice_bob.cast_vote(account, 'Alice')
        except AlreadyVoted as err:
            errors.append(err)

    threads = [threading.Thread(target=vote, args=(f'v{i % 50}',)) for i in range(200)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert alice_bob.votes_for('Alice') == 50
    assert len(errors) == 150
    totals = [e.total for e in alice_bob.events() if isinstance(e, Voted)]
    assert totals == list(range(1, 51))


def test_replay_from_file(tmp_path):
    path = str(tmp_path / 'chain.json')
    election = ledger.Election.create(ADMIN, EventLog(path))
    election.register(ADMIN, 'Alice')
    election.register(ADMIN, 'Bob')
    election.cast_vote('A', 'Alice')
    election.cast_vote('B', 'Bob')
    election.cast_vote('C', 'Alice')

    reopened = ledger.Election.open(path)
    assert reopened.administrator() == ADMIN
    assert reopened.tallies() == {'Alice': 2, 'Bob': 1}
    assert reopened.has_voted('C')
    assert reopened.events() == election.events()
    with pytest.raises(AlreadyVoted):
        reopened.cast_vote('A', 'Bob')
    reopened.cast_vote('D', 'Bob')
    assert ledger.Election.open(path).votes_for('Bob') == 2


@pytest.mark.parametrize('events', [
    [Voted('A', 'Alice', 1)],
    [CandidateAdded('Alice', ledger.derive_identifier('Alice')), Voted('A', 'Alice', 2)],
    [
        CandidateAdded('Alice', ledger.derive_identifier('Alice')),
        Voted('A', 'Alice', 1),
        Voted('A', 'Alice', 2),
    ],
    [
        CandidateAdded('Alice', ledger.derive_identifier('Alice')),
        CandidateAdded('Alice', ledger.derive_identifier('Alice')),
    ],
    [CandidateAdded('Alice', ledger.derive_identifier('Bob'))],
])
def test_replay_rejects_invalid_history(events):
    event_log = EventLog()
    event_log.create_genesis_block(ADMIN)
    for event in events:
        event_log.append(event)
    with pytest.raises(ChainIntegrityError):
        ledger.Election.from_log(event_log)


def test_replay_requires_genesis():
    with pytest.raises(ChainIntegrityError):
        ledger.Election.from_log(EventLog())


def write_rehashed(path, chain):
    # Keep hashes and links consistent so only the records themselves are bad.
    for position, block in enumerate(chain):
        if position:
            block['previous_hash'] = chain[position - 1]['hash']
        fields = {k: v for k, v in block.items() if k != 'hash'}
        block['hash'] = blockchain.Block(**fields).calculate_hash()
    with open(path, 'w') as f:
        json.dump(chain, f)


def saved_chain(path):
    election = ledger.Election.create(ADMIN, EventLog(path))
    election.register(ADMIN, 'Alice')
    election.cast_vote('A', 'Alice')
    with open(path) as f:
        return json.load(f)


def drop_administrator(chain):
    del chain[0]['transactions'][0]['administrator']


def genesis_not_a_list(chain):
    chain[0]['transactions'] = {'event': 'ElectionOpened', 'administrator': ADMIN}


def drop_total(chain):
    del chain[2]['transactions'][0]['total']


def numeric_name(chain):
    chain[1]['transactions'][0]['name'] = 5


def string_transaction(chain):
    chain[2]['transactions'] = ['Voted']


def unknown_event_type(chain):
    chain[1]['transactions'][0]['event'] = 'CandidateRemoved'


@pytest.mark.parametrize('corrupt', [
    drop_administrator, genesis_not_a_list, drop_total,
    numeric_name, string_transaction, unknown_event_type,
])
def test_open_rejects_malformed_records(tmp_path, corrupt):
    path = str(tmp_path / 'chain.json')
    chain = saved_chain(path)
    corrupt(chain)
    write_rehashed(path, chain)
    with pytest.raises(ChainIntegrityError):
        ledger.Election.open(path)


def test_create_over_existing_chain_rejected(tmp_path):
    path = str(tmp_path / 'chain.json')
    ledger.Election.create(ADMIN, EventLog(path))
    with pytest.raises(ChainIntegrityError):
        ledger.Election.create('second-admin', EventLog(path))
    assert ledger.Election.open(path).administrator() == ADMIN


def test_second_vote_reports_already_voted(alice_bob):
    alice_bob.cast_vote('A', 'Alice')
    assert alice_bob.has_voted('A')
    with pytest.raises(AlreadyVoted) as excinfo:
        alice_bob.cast_vote('A', 'Alice')
    assert excinfo.value.account == 'A'


def test_reads_wait_for_commit(alice_bob, monkeypatch):
    seen = {}
    append = alice_bob.event_log.append

    def append_then_read(event):
        block = append(event)
        reader = threading.Thread(target=lambda: seen.update(
            votes=alice_bob.votes_for('Alice'),
            voted=alice_bob.has_voted('A'),
            events=len(alice_bob.events()),
        ))
        reader.start()
        reader.join(timeout=0.2)
        seen['blocked'] = reader.is_alive()
        seen['reader'] = reader
        return block

    monkeypatch.setattr(alice_bob.event_log, 'append', append_then_read)
    alice_bob.cast_vote('A', 'Alice')
    seen['reader'].join()
    assert seen['blocked']
    assert seen['votes'] == 1
    assert seen['voted']
    assert seen['events'] == 3


def test_log_never_ahead_of_tally(alice_bob):
    lagging = []
    done = threading.Event()

    def poll():
        while not done.is_set():
            totals = [e.total for e in alice_bob.events() if isinstance(e, Voted)]
            current = alice_bob.votes_for('Alice')
            if totals and current < totals[-1]:
                lagging.append((totals[-1], current))

    poller = threading.Thread(target=poll)
    poller.start()
    voters = [threading.Thread(target=alice_bob.cast_vote, args=(f'v{i}', 'Alice')) for i in range(100)]
    for t in voters:
        t.start()
    for t in voters:
        t.join()
    done.set()
    poller.join()
    assert lagging == []
    assert alice_bob.votes_for('Alice') == 100
