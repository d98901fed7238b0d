"""
Decision Trail
Blueprint registry.

    decision_bp  /api/v1              decision, version, audit, share-link, object routes
    portal_bp    /api/v1/links        public token verify / consume
    health_bp    /api/v1/health       readiness / liveness probes
"""
