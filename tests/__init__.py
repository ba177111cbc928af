"""
Test Suite for the Tracker Service

- Event normalization (trace + webhook)
- Ingestion pipeline (counters, archive, escalation, step isolation)
- Aggregation reader (workers, stats, errors)
- Storage adapters, escalation client, config, HTTP shell
"""
