"""
Frontier controller: decides whether a discovered URL is fetched and how
far the crawl may expand from it.

The controller is a pure admission predicate.  The fetch engine calls
:meth:`FrontierController.admit` before each request; queueing and
de-duplication stay inside the engine.
"""

from __future__ import annotations

from crawl_ingest.models import crawl
from crawl_ingest.utils import logger, url as url_mod

log = logger.create_logger("Frontier")


class FrontierController:
    """Origin-scope admission rules for one crawl.

    Args:
        scope: The in-scope origin.
        skip_external: Drop out-of-scope URLs instead of fetching them
            without expansion.
    """

    def __init__(self, scope: crawl.ScopeRule, *, skip_external: bool = False) -> None:
        self._scope = scope
        self._skip_external = skip_external

    @property
    def scope(self) -> crawl.ScopeRule:
        return self._scope

    def seed(self, start_url: str) -> crawl.CrawlRequest:
        """Build the seed request, which carries no depth limit."""
        return crawl.CrawlRequest(url=start_url, remaining_depth=None)

    def admit(self, request: crawl.CrawlRequest) -> crawl.AdmissionDecision:
        """Classify *request* and return the admission decision.

        Malformed URLs are skipped so a single bad link cannot stop the
        crawl.  Out-of-scope URLs are skipped or fetched without
        expansion depending on ``skip_external``.  In-scope URLs expand
        until their remaining depth reaches zero.
        """
        try:
            in_scope = url_mod.is_in_scope(request.url, self._scope)
        except ValueError:
            log.debug("Skipping malformed URL", {"url": request.url})
            return crawl.AdmissionDecision.skip()

        if not in_scope:
            if self._skip_external:
                log.debug("Skipping external URL", {"url": request.url})
                return crawl.AdmissionDecision.skip()
            return crawl.AdmissionDecision.fetch_only()

        depth = request.remaining_depth
        if depth is None:
            return crawl.AdmissionDecision.fetch_and_expand(None)
        if depth <= 0:
            return crawl.AdmissionDecision.fetch_only()
        return crawl.AdmissionDecision.fetch_and_expand(depth - 1)
