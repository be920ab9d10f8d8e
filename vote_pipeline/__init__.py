"""
Distributed vote pipeline.

Ingests one vote per voter through a queue, records it with an atomic
claim-and-increment on sharded counters, and serves periodically
aggregated snapshots to readers.
"""

__version__ = '2.1.0'
