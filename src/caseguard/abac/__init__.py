"""
Attribute-based access control.

- attributes: the catalog and the tables keyed by it
- guards: auditor isolation checks
- evaluator: allow/deny decisions, each one recorded
- grants: administration of user attributes
"""
