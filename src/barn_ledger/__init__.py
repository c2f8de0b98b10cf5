"""
Invoice PDF → Extraction → Normalization → Entity Resolution → Approval

Turns noisy document-understanding payloads for an equestrian business into
USD-denominated invoices whose line items are attributed to canonical horses
and people, with alias learning from human corrections and cross-category
splits at approval time.
"""

__version__ = "0.1.0"
