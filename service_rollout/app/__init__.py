"""
Rollout Service package.

This package moves traffic from an existing (control) implementation to a
new (candidate) one while comparing both. It provides:

- app.main: API surface for rollout configuration, eligibility checks and
  experiment execution.
- app.config: Config providers (Redis, in-memory) and typed config stores.
- app.eligibility: Deterministic bucketing and the layered eligibility policy.
- app.experiment: Dual-path execution, comparison and conditional runners.
- app.publishers: Sinks for comparison records.

Guidelines:
- The service is stateless; every decision re-reads the shared config store.
- The caller always gets the control's result; candidate failures are
  recorded, never raised.
- Eligibility errors fail closed.
"""
