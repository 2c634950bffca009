"""
Outbound calling and voice webhooks.

Adapters are chosen in ``carecall.telephony.factory``; nothing is imported
here so that config and interface stay importable without httpx clients.
"""
