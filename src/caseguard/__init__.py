"""
caseguard - access control and identity protection for case management

The core that decides who may do what inside the case platform:
- Attribute-based policy evaluation with clearance and restrictions
- Identity vault mapping real users to case-scoped pseudonyms
- Single-use ephemeral credentials that unlock one case for a judge
- Anonymized audit trail safe for the low-privilege auditor role
"""

__version__ = "0.1.0"
