import pandas as pd

TALLY_COLUMNS = ['Candidate', 'Identifier', 'Votes', 'Share']
VOTER_COLUMNS = ['account', 'has_voted']
EVENT_COLUMNS = ['block', 'event', 'name', 'identifier', 'voter', 'total']


def tally_frame(election):
    tallies = election.tallies()
    total = sum(tallies.values())
    rows = [
        {
            'Candidate': name,
            'Identifier': election.identifier_for(name),
            'Votes': votes,
            'Share': round(votes / total * 100, 1) if total else 0.0,
        }
        for name, votes in tallies.items()
    ]
    return pd.DataFrame(rows, columns=TALLY_COLUMNS)


def voter_frame(election):
    rows = [{'account': v.account, 'has_voted': v.has_voted} for v in election.voters()]
    return pd.DataFrame(rows, columns=VOTER_COLUMNS)


def event_frame(election):
    rows = []
    for block in election.event_log.chain[1:]:
        for tx in block.transactions:
            rows.append({
                'block': block.index,
                'event': tx['event'],
                'name': tx.get('name'),
                'identifier': tx.get('identifier'),
                'voter': tx.get('voter'),
                'total': tx.get('total'),
            })
    return pd.DataFrame(rows, columns=EVENT_COLUMNS)


def save_frame(df, path):
    df.to_csv(path, index=False)
