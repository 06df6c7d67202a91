# --- Event type tags as stored in block transactions ---
ELECTION_OPENED = "ElectionOpened"
CANDIDATE_ADDED = "CandidateAdded"
VOTED = "Voted"


class Candidate:
    """A registered candidate, keyed by the digest of its name."""
    def __init__(self, name, identifier):
        self.name = name
        self.identifier = identifier
        self.registered = True

    def __repr__(self):
        return f"Candidate({self.name!r}, {self.identifier[:12]}...)"


class VoterRecord:
    """Created on an account's first successful vote; never reset."""
    def __init__(self, account):
        self.account = account
        self.has_voted = True


class ElectionOpened:
    def __init__(self, administrator):
        self.administrator = administrator

    def to_dict(self):
        return {'event': ELECTION_OPENED, 'administrator': self.administrator}


class CandidateAdded:
    def __init__(self, name, identifier):
        self.name = name
        self.identifier = identifier

    def to_dict(self):
        return {
            'event': CANDIDATE_ADDED,
            'name': self.name,
            'identifier': self.identifier
        }

    def __eq__(self, other):
        return isinstance(other, CandidateAdded) and self.to_dict() == other.to_dict()


class Voted:
    def __init__(self, voter, name, total):
        self.voter = voter
        self.name = name
        self.total = total

    def to_dict(self):
        return {
            'event': VOTED,
            'voter': self.voter,
            'name': self.name,
            'total': self.total
        }

    def __eq__(self, other):
        return isinstance(other, Voted) and self.to_dict() == other.to_dict()


_EVENT_TYPES = {
    ELECTION_OPENED: lambda d: ElectionOpened(d['administrator']),
    CANDIDATE_ADDED: lambda d: CandidateAdded(d['name'], d['identifier']),
    VOTED: lambda d: Voted(d['voter'], d['name'], d['total']),
}


def event_from_dict(data):
    """Rebuild an event object from its stored transaction dict."""
    try:
        return _EVENT_TYPES[data['event']](data)
    except KeyError as err:
        raise ValueError(f"malformed event record: {data!r}") from err
