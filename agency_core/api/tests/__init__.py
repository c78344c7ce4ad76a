"""
Agency Core API Test Suite

Test Files:
- conftest.py: Shared fixtures (database, tenants, users, tokens)
- test_auth_routes.py: Login, logout and identity
- test_calls_routes.py: Audited business flow and permission gates
- test_audit_routes.py: Audit listing and statistics
- test_sessions_routes.py: Session listing and revocation

Run Commands:
    pytest agency_core/api/tests -v
"""
