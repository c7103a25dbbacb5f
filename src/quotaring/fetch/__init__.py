from quotaring.fetch.api_client import QuotaApiClient
from quotaring.fetch.chain import AcquireResult, FetchStrategyChain
from quotaring.fetch.normalizer import ResponseNormalizer, normalize
from quotaring.fetch.scrape import BestEffortExtractor, HtmlUsageExtractor
from quotaring.fetch.scrape_bridge import ContentRenderer, ScrapeBridge
from quotaring.fetch.strategies import (
    AttemptContext,
    DirectApiStrategy,
    IdentityDiscoveryStrategy,
    PassiveScrapeStrategy,
    Strategy,
)

__all__ = [
    "AcquireResult",
    "AttemptContext",
    "BestEffortExtractor",
    "ContentRenderer",
    "DirectApiStrategy",
    "FetchStrategyChain",
    "HtmlUsageExtractor",
    "IdentityDiscoveryStrategy",
    "PassiveScrapeStrategy",
    "QuotaApiClient",
    "ResponseNormalizer",
    "ScrapeBridge",
    "Strategy",
    "normalize",
]
