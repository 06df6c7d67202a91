import hashlib
import json
import os
import time

import structlog

from data_models import ELECTION_OPENED, ElectionOpened, event_from_dict
from errors import ChainIntegrityError

log = structlog.get_logger(__name__)


class Block:
    def __init__(self, index, timestamp, previous_hash, transactions, hash=None):
        self.index = index
        self.timestamp = timestamp
        self.transactions = transactions
        self.previous_hash = previous_hash
        self.hash = hash or self.calculate_hash()

    def calculate_hash(self):
        content = json.dumps({
            'index': self.index,
            'timestamp': self.timestamp,
            'transactions': self.transactions,
            'previous_hash': self.previous_hash
        }, sort_keys=True).encode()
        return hashlib.sha256(content).hexdigest()

    def to_dict(self):
        return {
            'index': self.index,
            'timestamp': self.timestamp,
            'transactions': self.transactions,
            'previous_hash': self.previous_hash,
            'hash': self.hash
        }


class EventLog:
    """Append-only audit trail: one mined block per committed mutation.

    Block 0 records the election administrator; every later block carries
    exactly one ``CandidateAdded`` or ``Voted`` event. When ``filename`` is
    given the whole chain is rewritten to it after each append, otherwise
    the log lives in memory only.
    """

    def __init__(self, filename=None):
        self.filename = filename
        self.chain = []
        if self.filename and os.path.exists(self.filename):
            self.load_chain()

    def __len__(self):
        return len(self.chain)

    @property
    def administrator(self):
        if not self.chain:
            return None
        return self.chain[0].transactions[0]['administrator']

    def create_genesis_block(self, administrator):
        if self.chain:
            raise ChainIntegrityError("event log already has a genesis block")
        genesis_block = Block(0, time.time(), "0", [ElectionOpened(administrator).to_dict()])
        self._commit(genesis_block)
        log.info("election_opened", administrator=administrator, filename=self.filename)
        return genesis_block

    def append(self, event):
        if not self.chain:
            raise ChainIntegrityError("cannot append to an event log without a genesis block")
        new_block = Block(
            index=len(self.chain),
            timestamp=time.time(),
            previous_hash=self.chain[-1].hash,
            transactions=[event.to_dict()]
        )
        self._commit(new_block)
        return new_block

    def _commit(self, block):
        # The chain in memory only grows once the file write has succeeded.
        new_chain = self.chain + [block]
        if self.filename:
            self._write(new_chain)
        self.chain = new_chain

    def replay(self):
        """Yield every recorded event after the genesis block, in order."""
        for block in self.chain[1:]:
            for tx in block.transactions:
                yield event_from_dict(tx)

    def verify(self):
        if not self.chain:
            return
        genesis = self.chain[0]
        if (genesis.index != 0 or not isinstance(genesis.transactions, list)
                or len(genesis.transactions) != 1
                or not isinstance(genesis.transactions[0], dict)
                or genesis.transactions[0].get('event') != ELECTION_OPENED
                or not isinstance(genesis.transactions[0].get('administrator'), str)):
            raise ChainIntegrityError("genesis block does not open an election")
        for position, block in enumerate(self.chain):
            if not isinstance(block.transactions, list) or not all(
                    isinstance(tx, dict) for tx in block.transactions):
                raise ChainIntegrityError(f"block #{block.index} holds malformed transactions")
            if block.index != position:
                raise ChainIntegrityError(f"block #{block.index} found at position {position}")
            if block.hash != block.calculate_hash():
                raise ChainIntegrityError(f"block #{block.index} hash mismatch")
            if position and block.previous_hash != self.chain[position - 1].hash:
                raise ChainIntegrityError(f"block #{block.index} is not linked to its predecessor")

    def save_chain(self):
        self._write(self.chain)

    def _write(self, chain):
        tmp_path = f"{self.filename}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump([b.to_dict() for b in chain], f, indent=4)
        os.replace(tmp_path, self.filename)
        log.debug("chain_saved", filename=self.filename, blocks=len(chain))

    def load_chain(self):
        try:
            with open(self.filename, 'r') as f:
                data = json.load(f)
            chain = [Block(**d) for d in data]
        except (OSError, ValueError, TypeError) as err:
            raise ChainIntegrityError(f"cannot read event log {self.filename}: {err}") from err
        self.chain = chain
        self.verify()
        log.debug("chain_loaded", filename=self.filename, blocks=len(self.chain))
