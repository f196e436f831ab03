"""
Credit ledger app.

Each processed incident costs the submitter credits. Balances live in
CreditAccount rows seeded from a balance source; every movement is written
to the append-only CreditTransaction log.
"""
