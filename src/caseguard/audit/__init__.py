"""
Audit trail: bounded decision writes, anonymization, rate limiting and
auditor-facing reports.
"""
