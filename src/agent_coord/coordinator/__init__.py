"""Task coordination for cooperating agent processes.

Why a SQLite pull queue and not a broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
All agents run on one machine and share one database file. The store is the
only moving part: agents poll ``TaskQueue.claim_next`` and the claim is a
single ``BEGIN IMMEDIATE`` transaction with a compare-and-swap update, so two
agents never hold the same task. Messages, heartbeats and history live in the
same file and commit atomically with the task they refer to.

A broker (Redis, RabbitMQ) would add an operational dependency while the
contract that matters here (at-most-one claim, bounded retries, destructive
message reads) would still need custom code around it. Latency is bounded by
the poll interval, which is acceptable for long-running agent tasks.
"""
