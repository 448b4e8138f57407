"""
Sensemaker task service.

Turns uploaded comment datasets (CSV or JSON exports of unknown provenance)
into canonical comments and runs the long analysis pipeline behind a
queue so clients submit once and poll for the result.

Packages:
    ingest   - format detection and row conversion
    schemas  - canonical comment, task and result record models
    tasks    - submit/poll/delete orchestration and the queue worker
    storage  - durable result store backends
    common   - Kafka consumer, retry routing, DLQ, metrics, health
    engine   - analysis engine contract and loader
    api      - aiohttp HTTP surface
"""

__version__ = "0.1.0"
