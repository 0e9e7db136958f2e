"""Archive RabbitMQ queue traffic into a document table.

Modules include configuration, RabbitMQ helpers, content normalization,
record building, the ingest pipeline, the document store, and metrics and
tracing utilities.
"""
