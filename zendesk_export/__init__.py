"""
Zendesk Monthly Export

Resumable export of one calendar month of Zendesk tickets into a shared
spreadsheet report.
"""

__version__ = "0.1.0"
