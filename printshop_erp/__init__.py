"""
printshop-erp: back-office services for a print shop.

Jobs, sales (customers, leads, estimates, invoices), purchasing, accounting,
approval workflows and OCR intake of supplier invoices, backed by a
relational store, S3 file buckets and an OpenAI model.
"""

__version__ = "0.1.0"
