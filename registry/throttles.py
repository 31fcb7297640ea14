# registry/throttles.py

from rest_framework.throttling import ScopedRateThrottle


class PostOnlyScopedThrottle(ScopedRateThrottle):
    """
    Scoped throttle applied to POST only, keyed per authenticated user.

    Cache key shape:
      throttle_<scope>_u<user_id>
    """

    def get_cache_key(self, request, view):
        if request.method != "POST":
            return None

        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return None

        return f"throttle_{self.scope}_u{user.id}"

    def allow_request(self, request, view):
        # Scope is fixed on the class, not read from the view
        if not self.scope:
            return True
        self.rate = self.get_rate()
        self.num_requests, self.duration = self.parse_rate(self.rate)
        return super(ScopedRateThrottle, self).allow_request(request, view)


class ProjectCreateThrottle(PostOnlyScopedThrottle):
    scope = "project-create"


class SubmissionCreateThrottle(PostOnlyScopedThrottle):
    scope = "submission-create"


class RegistryRetryThrottle(PostOnlyScopedThrottle):
    scope = "registry-retry"
