"""Best-effort external knowledge lookup merged into the prompt before completion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

import httpx

from .classifier import Category
from .models import SubjectProduct

logger = logging.getLogger("motorchat.augmenter")

# First-party data is authoritative for these; web search must never be consulted.
AUTHORITATIVE_CATEGORIES: FrozenSet[Category] = frozenset(
    {Category.FINANCING, Category.TRADEIN_REDIRECT, Category.PROMOTIONS}
)

SERVICE_DISCLAIMER = (
    "**Note:** These are general troubleshooting suggestions. For Mercury motors, our certified "
    "techs can diagnose it properly. Start a service request: {service_url}"
)


@dataclass(frozen=True)
class SearchProfile:
    """Per-category search instruction template, domain allow-list, and header."""
    prefix: str
    instruction: str
    domains: Tuple[str, ...]
    header: str


SEARCH_PROFILES: Dict[Category, SearchProfile] = {
    Category.MERCURY: SearchProfile(
        "2026 Mercury Marine outboard",
        "You are a marine engine expert specializing in Mercury Marine outboards. Provide accurate, "
        "concise technical information about features, specifications, maintenance, and comparisons. "
        "Keep responses under 200 words.",
        ("mercurymarine.com", "boatingmag.com", "boats.com", "discoverboating.com"),
        "## VERIFIED MERCURY INFO",
    ),
    Category.HARRIS: SearchProfile(
        "Harris Boat Works Gores Landing Ontario Rice Lake",
        "You are looking up business information for Harris Boat Works, a Mercury Marine dealer in "
        "Gores Landing, Ontario on Rice Lake. Keep responses concise.",
        (),
        "## VERIFIED BUSINESS INFO",
    ),
    Category.LOCAL: SearchProfile(
        "Ontario Canada",
        "You are a local Ontario boating and fishing expert for the Rice Lake, Kawartha Lakes and "
        "Trent-Severn region. Keep responses helpful and specific.",
        (),
        "## LOCAL INFO",
    ),
    Category.BOATING: SearchProfile(
        "boating",
        "You are an experienced Canadian boating expert. Provide practical, accurate advice about boat "
        "operation, safety, and maintenance. Keep responses clear and concise.",
        ("discoverboating.com", "boatus.com", "boatingmag.com", "tc.canada.ca"),
        "## BOATING INFO",
    ),
    Category.LICENSING: SearchProfile(
        "Canada pleasure craft operator card PCOC boating license Ontario",
        "You are an expert on Canadian boating regulations and licensing. Keep responses clear and factual.",
        ("tc.canada.ca", "boaterexam.com", "myboatcard.com"),
        "## LICENSING INFO",
    ),
    Category.TOWING: SearchProfile(
        "boat trailer boating",
        "You are a boating expert helping with trailer, towing, and boat launch questions. "
        "Keep responses concise and safety-focused.",
        ("discoverboating.com", "boatus.com", "boatingmag.com"),
        "## TOWING & TRANSPORT",
    ),
    Category.SEASONAL: SearchProfile(
        "Ontario Canada boating",
        "You are a local Ontario boating expert. Provide accurate information about seasonal conditions, "
        "ice-out dates and water temperatures.",
        (),
        "## SEASONAL INFO",
    ),
    Category.ACCESSORIES: SearchProfile(
        "Mercury Marine boat accessories",
        "You are a marine accessories expert. Provide helpful information about props, gauges, rigging, "
        "and boat upgrades. Keep responses practical.",
        ("mercurymarine.com", "boatingmag.com", "discoverboating.com", "marinecatalogue.ca"),
        "## ACCESSORIES",
    ),
    Category.ENVIRONMENTAL: SearchProfile(
        "boat fuel ethanol marine",
        "You are a marine fuel and environmental expert. Keep responses practical.",
        ("boatus.com", "discoverboating.com", "mercurymarine.com"),
        "## FUEL & ENVIRONMENT",
    ),
    Category.EVENTS: SearchProfile(
        "Ontario boating fishing event",
        "You are a local Ontario boating community expert covering boat shows, fishing derbies, clubs "
        "and community events.",
        (),
        "## EVENTS & COMMUNITY",
    ),
    Category.COMPATIBILITY: SearchProfile(
        "boat motor compatibility",
        "You are a marine expert helping match motors to boats: HP limits, transom heights, and "
        "compatibility. Keep responses practical and safety-focused.",
        ("discoverboating.com", "boatus.com", "boats.com"),
        "## BOAT COMPATIBILITY",
    ),
    Category.TROUBLESHOOTING: SearchProfile(
        "outboard motor troubleshooting",
        "You are a marine mechanic providing general troubleshooting guidance for outboard motors. "
        "Always emphasize that professional diagnosis is recommended.",
        ("mercurymarine.com", "boatus.com", "iboats.com"),
        "## TROUBLESHOOTING (General Guidance)",
    ),
    Category.GENERAL: SearchProfile(
        "",
        "Provide helpful, accurate information. If this relates to boating, Mercury Marine, or Ontario, "
        "focus on that context. Keep responses concise and practical.",
        (),
        "## ADDITIONAL INFO",
    ),
}


def should_augment(category: Category) -> bool:
    """True when a category may be enriched by external search."""
    return category is not Category.NONE and category not in AUTHORITATIVE_CATEGORIES and category in SEARCH_PROFILES


class ContextAugmenter:
    """Category-aware web search client with a soft timeout."""

    def __init__(
        self,
        api_key: str,
        model: str = "sonar",
        url: str = "https://api.perplexity.ai/chat/completions",
        timeout_sec: float = 6.0,
        service_url: str = "",
        client: Optional[httpx.Client] = None,
    ) -> None:
        """Purpose: Configure the search endpoint, credentials, and timeout.
        Inputs/Outputs: Inputs are API settings and an optional httpx.Client; no return.
        Side Effects / State: Creates an httpx.Client when none is injected.
        Dependencies: httpx.
        Failure Modes: None at init; an empty api_key disables lookups.
        If Removed: Answers rely only on first-party context.
        Testing Notes: Inject httpx.Client(transport=httpx.MockTransport(...)).
        """
        self._api_key = api_key
        self._model = model
        self._url = url
        self._timeout = timeout_sec
        self._service_url = service_url
        self._client = client or httpx.Client(timeout=timeout_sec)

    def build_query(self, message: str, profile: SearchProfile, subject: Optional[SubjectProduct]) -> str:
        query = f"{profile.prefix} {message}".strip() if profile.prefix else message
        if subject and subject.model and subject.model.lower() not in query.lower():
            query = f"{query} ({subject.model})"
        return query

    def augment(self, message: str, category: Category, subject: Optional[SubjectProduct] = None) -> Optional[str]:
        """Purpose: Fetch an annotated knowledge block for a message, or nothing.
        Inputs/Outputs: Inputs are the message, its category, and the subject snapshot;
            output is a markdown block or None.
        Side Effects / State: One HTTP POST to the search endpoint.
        Dependencies: SEARCH_PROFILES, httpx.
        Failure Modes: Transport errors, non-2xx responses, timeouts, and malformed
            bodies all return None and log a warning; the turn continues.
        If Removed: Unmatched knowledge questions lose external enrichment.
        Testing Notes: Authoritative categories never reach the transport.
        """
        # Skip authoritative and unrouted categories before touching the network.
        if not should_augment(category):
            return None
        if not self._api_key:
            logger.info("augment skipped category=%s reason=no_api_key", category.value)
            return None

        profile = SEARCH_PROFILES[category]
        body: Dict[str, object] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": profile.instruction},
                {"role": "user", "content": self.build_query(message, profile, subject)},
            ],
            "search_recency_filter": "year",
        }
        if profile.domains:
            body["search_domain_filter"] = list(profile.domains)

        try:
            response = self._client.post(
                self._url,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
            content = data["choices"][0]["message"]["content"]
            citations = data.get("citations") or []
            if not isinstance(citations, list):
                citations = []
        except httpx.HTTPError as exc:
            logger.warning("augment failed category=%s error=%s", category.value, exc)
            return None
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning("augment unparseable category=%s error=%s", category.value, exc)
            return None

        if not isinstance(content, str) or not content.strip():
            return None
        logger.info("augment ok category=%s citations=%d", category.value, len(citations))

        if category is Category.TROUBLESHOOTING:
            disclaimer = SERVICE_DISCLAIMER.format(service_url=self._service_url)
            return f"{profile.header}\n{content.strip()}\n\n{disclaimer}"
        sources = f"\n\nSources: {', '.join(str(c) for c in citations[:2])}" if citations else ""
        return f"{profile.header}\n{content.strip()}{sources}"

    def close(self) -> None:
        self._client.close()
