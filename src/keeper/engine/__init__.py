"""Keeper engine: deterministic architectural governance.

A proposed change is evaluated against the seed registry by one decision
table per domain (frontend, backend, data, auth). The per-domain verdicts
are aggregated into an immutable Decision, appended to the decision store,
and later used to validate the changeset that was actually implemented.
"""
