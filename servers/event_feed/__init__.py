"""
Local Events Feed

Aggregates nearby events from several ticketing APIs:
- Resilient provider calls (circuit breaker, rate limiting, coalescing, timeouts)
- Normalization to one canonical event schema
- Cross-source deduplication, staleness filtering and relevance ranking

Target: UK cities (Ticketmaster, Skiddle, Eventbrite)
"""

__version__ = "1.0.0"
