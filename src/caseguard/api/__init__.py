"""
API module for caseguard.

Provides REST API routes for:
- Anonymized audit reporting
- Case assignment, credential issue and unlock
- Attribute administration and identity reveal
"""
