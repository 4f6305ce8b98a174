"""
dispatch — Multi-channel notification dispatch.

Sub-modules:
    channels/   — Per-channel delivery backends (media, SMTP email, WhatsApp)
    facade      — Validation policy + ordered email → WhatsApp pipeline
    models      — Credentials, request, outcome and receipt structures
"""
