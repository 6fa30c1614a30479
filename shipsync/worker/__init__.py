"""
shipsync Worker Service

Runs the job queue workers and the scheduled producers:
- Webhook delivery
- ERP tracking/status updates and DOC_NO lookups
- Carrier tracking number polling
- Periodic status checks, tracking fetches, ERP order sync and job cleanup
"""

__all__ = []
