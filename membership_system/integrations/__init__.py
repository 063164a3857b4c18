"""Outbound collaborators: Midtrans, WhatsApp and PDF rendering."""
from .midtrans_client import MidtransClient, SnapTransaction, compute_signature, verify_signature
from .pdf_renderer import PDFDocumentRenderer
from .whatsapp_client import WhatsAppClient

__all__ = [
    "MidtransClient",
    "PDFDocumentRenderer",
    "SnapTransaction",
    "WhatsAppClient",
    "compute_signature",
    "verify_signature",
]
