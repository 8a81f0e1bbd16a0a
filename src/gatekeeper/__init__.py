"""Webhook gatekeeper.

Trust and admission layer for inbound webhooks from collaboration providers.
For each request it decides:
- whether the request is authentic (verification)
- whether the event should be processed (filters)
- how to authenticate calls back to the provider (credentials)

The webhook orchestrator composes the three; main.py serves it over HTTP.
"""
