"""
Pipeline Orchestration app.

Drives each incident through a strict, linear chain:
intake → understand → decide → review → audit

Key concepts:
- One orchestrator per run with correlation IDs (trace_id/run_id)
- Structured DTOs between stages; nothing is persisted before audit
- Bounded-parallel batches with per-item failure isolation
- Reject → correct → reprocess replays the same pipeline
- Monitoring signals at every stage boundary
"""
