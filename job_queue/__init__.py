"""
Durable Job Queue — deferred side effects over a shared Redis list.

- store: key-value backends (Upstash REST, native Redis, in-memory)
- job_queue: enqueue / drain / retry / dead-letter
- dispatch: job type → processor routing
- worker: standalone periodic drain loop
"""
