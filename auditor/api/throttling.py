"""
API throttling classes.

Rates come from REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] in settings.
"""

from rest_framework.throttling import UserRateThrottle


class AuditStartThrottle(UserRateThrottle):
    """
    Throttle for starting audits.

    Each audit fans out into one crawl and one AI call per sitemap URL, so
    only creation is limited; reads on the same endpoint are not.
    Applied to: POST /api/v1/audits/
    """

    scope = "audit_start"

    def allow_request(self, request, view):
        if request.method != "POST":
            return True
        return super().allow_request(request, view)
