"""
Agency Core: audit and identity layer for the multi-tenant agency dashboard.

Core Components:
    - Identity: credential verification, device classification, sessions
    - Access: role-based permissions
    - Audit: immutable request context, audited data access, audit log store
"""

__version__ = "1.0.0"
