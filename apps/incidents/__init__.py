"""
Incident intake app.

Holds the entity model for submitted incidents and batches: the incident
state machine, its transition history, and the append-only audit, rejection
and correction records.
"""
