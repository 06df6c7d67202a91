class LedgerError(Exception):
    """Base class for every rejected ledger operation."""


class Unauthorized(LedgerError):
    def __init__(self, caller):
        self.caller = caller
        super().__init__(f"account {caller} is not the election administrator")


class AlreadyRegistered(LedgerError):
    def __init__(self, name, identifier):
        self.name = name
        self.identifier = identifier
        super().__init__(f"candidate {name!r} is already registered")


class AlreadyVoted(LedgerError):
    def __init__(self, account):
        self.account = account
        super().__init__(f"account {account} has already voted")


class UnknownCandidate(LedgerError):
    def __init__(self, name, identifier):
        self.name = name
        self.identifier = identifier
        super().__init__(f"candidate {name!r} is not registered")


class ChainIntegrityError(LedgerError):
    """The event log cannot be read, or its blocks do not replay cleanly."""


class InvalidCredentials(Exception):
    """A private key could not produce a verifiable signature."""
