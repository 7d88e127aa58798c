"""
Services Layer

TDF codec, participant reconciliation, blob storage and the import job
manager. Services:
- Accept domain inputs (IDs, sessions, raw bytes)
- Return domain outputs (models, reports, documents)
- Do NOT depend on HTTP request/response objects
"""
