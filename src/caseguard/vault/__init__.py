"""
Identity vault and ephemeral case credentials.
"""
