"""
Core library: reusable, infrastructure-agnostic components.

Modules:
    errors   - Typed exception hierarchy with retry classification
    logging  - Structured JSON logging with context propagation
    utils    - JSON serialization and worker id helpers
"""
