"""
channels — Per-channel delivery backends.

    media       — remote URL → transient local file (email attachments)
    email_smtp  — EmailDispatcher.send_email(...)   → DeliveryReceipt
    whatsapp    — WhatsAppDispatcher.send_message(...) → DeliveryReceipt

Dispatchers raise relay errors; outcome mapping lives in the façade.
"""
