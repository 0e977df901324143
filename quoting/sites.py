"""
Known-site registry and site identifier sanitization.

Every site identifier that enters the pipeline (persisted plans, catalog rows,
advisory suggestions, reranker output, transport events) goes through
``sanitize_site_id``; anything that does not resolve to a registry entry is
dropped without error.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote_plus


@dataclass(frozen=True)
class SiteProfile:
    site_id: str
    domain: str
    search_url_template: str
    category: str = "unknown"
    priority: int = 100
    enabled: bool = True


def _profile(site_id, domain, template, category="unknown", priority=100, enabled=True) -> SiteProfile:
    return SiteProfile(
        site_id=site_id,
        domain=domain,
        search_url_template=template,
        category=category,
        priority=priority,
        enabled=enabled,
    )


# Seed priorities and enabled flags match the persisted catalog defaults; lower priority is preferred.
KNOWN_SITES: Dict[str, SiteProfile] = {
    p.site_id: p
    for p in (
        _profile("amazon", "amazon.com", "https://www.amazon.com/s?k={q}", "electronics", 10),
        _profile("amazon_business", "amazon.com", "https://www.amazon.com/s?k={q}", "office", 35),
        _profile("bestbuy", "bestbuy.com", "https://www.bestbuy.com/site/searchpage.jsp?st={q}", "electronics", 20),
        _profile("newegg", "newegg.com", "https://www.newegg.com/p/pl?d={q}", "electronics", 30),
        _profile("bhphotovideo", "bhphotovideo.com", "https://www.bhphotovideo.com/c/search?q={q}", "electronics", 40, enabled=False),
        _profile("walmart", "walmart.com", "https://www.walmart.com/search?q={q}", "electronics", 50, enabled=False),
        _profile("walmart_business", "business.walmart.com", "https://www.walmart.com/search?q={q}", "office", 55, enabled=False),
        _profile("adorama", "adorama.com", "https://www.adorama.com/l/?searchinfo={q}", "electronics", 60, enabled=False),
        _profile("microcenter", "microcenter.com", "https://www.microcenter.com/search/search_results.aspx?Ntt={q}", "electronics", 70),
        _profile("ebay", "ebay.com", "https://www.ebay.com/sch/i.html?_nkw={q}", "electronics", 80),
        _profile("target", "target.com", "https://www.target.com/s?searchTerm={q}", "unknown", 60),
        _profile("google_shopping", "google.com", "https://www.google.com/search?tbm=shop&q={q}", "unknown", 25),
        _profile("staples", "staples.com", "https://www.staples.com/{q}/directory_{q}", "office", 10),
        _profile("officedepot", "officedepot.com", "https://www.officedepot.com/a/search/?q={q}", "office", 20),
        _profile("quill", "quill.com", "https://www.quill.com/search?keywords={q}", "office", 30),
        _profile("uline", "uline.com", "https://www.uline.com/BL_35/Search?keywords={q}", "office", 40),
        _profile("webstaurantstore", "webstaurantstore.com", "https://www.webstaurantstore.com/search/{q}.html", "restaurant", 10),
        _profile("katom", "katom.com", "https://www.katom.com/search.html?query={q}", "restaurant", 20),
        _profile("centralrestaurant", "centralrestaurant.com", "https://www.centralrestaurant.com/search/{q}", "restaurant", 30),
        _profile("therestaurantstore", "therestaurantstore.com", "https://www.therestaurantstore.com/search/{q}", "restaurant", 40, enabled=False),
        _profile("restaurantdepot", "restaurantdepot.com", "https://www.restaurantdepot.com/catalogsearch/result/?q={q}", "restaurant", 50, enabled=False),
        _profile("ace_mart", "acemart.com", "https://www.acemart.com/search?q={q}", "restaurant", 60),
        _profile("grainger", "grainger.com", "https://www.grainger.com/search?searchQuery={q}", "electrical", 10),
        _profile("zoro", "zoro.com", "https://www.zoro.com/search?q={q}", "electrical", 20),
        _profile("homedepot", "homedepot.com", "https://www.homedepot.com/s/{q}", "electrical", 30),
        _profile("platt", "platt.com", "https://www.platt.com/search.aspx?q={q}", "electrical", 40),
        _profile("cityelectricsupply", "cityelectricsupply.com", "https://www.cityelectricsupply.com/search?text={q}", "electrical", 50, enabled=False),
        _profile("lowes", "lowes.com", "https://www.lowes.com/search?searchTerm={q}", "electrical", 60),
        _profile("mcmaster", "mcmaster.com", "https://www.mcmaster.com/products/{q}/", "electrical", 70),
    )
}

DEFAULT_SITE_PLANS: Dict[str, List[str]] = {
    "office": ["staples", "officedepot", "quill", "amazon_business", "walmart_business", "uline", "target"],
    "electronics": ["amazon", "newegg", "bestbuy", "ebay", "target", "microcenter", "google_shopping"],
    "restaurant": ["webstaurantstore", "katom", "centralrestaurant", "amazon", "ebay"],
    "electrical": ["grainger", "zoro", "homedepot", "platt", "lowes", "mcmaster"],
    "unknown": ["amazon", "walmart", "bestbuy", "target", "ebay", "newegg", "google_shopping"],
}

_SEPARATORS = re.compile(r"[^a-z0-9]+")


def _compact(value: str) -> str:
    return _SEPARATORS.sub("", value)


# Lookup by separator-free form ("amazonbusiness", "officedepot") and by
# domain ("officedepot.com" -> "officedepotcom").
_LOOKUP: Dict[str, str] = {}
for _site_id, _p in KNOWN_SITES.items():
    _LOOKUP.setdefault(_compact(_site_id), _site_id)
for _site_id, _p in KNOWN_SITES.items():
    _LOOKUP.setdefault(_compact(_p.domain), _site_id)


def sanitize_site_id(raw: object) -> Optional[str]:
    """Fold case, punctuation and whitespace, then resolve against the registry."""
    if not isinstance(raw, str):
        return None
    folded = raw.strip().lower()
    if folded.startswith("www."):
        folded = folded[4:]
    folded = _SEPARATORS.sub("_", folded).strip("_")
    if not folded:
        return None
    if folded in KNOWN_SITES:
        return folded
    return _LOOKUP.get(_compact(folded))


def sanitize_sites(raw_sites: Iterable[object]) -> List[str]:
    """Sanitize and dedupe, preserving first-seen order."""
    seen: Dict[str, None] = {}
    for raw in raw_sites or []:
        site_id = sanitize_site_id(raw)
        if site_id and site_id not in seen:
            seen[site_id] = None
    return list(seen.keys())


def is_known_site(site_id: str) -> bool:
    return site_id in KNOWN_SITES


def get_profile(site_id: str) -> Optional[SiteProfile]:
    return KNOWN_SITES.get(site_id)


def vendor_search_url(site_id: str, query: str) -> str:
    """Search link for a site, falling back to a generic web search for unknown sites."""
    q = quote_plus(query or "")
    profile = KNOWN_SITES.get(site_id)
    if not profile:
        return f"https://www.google.com/search?q={q}+buy"
    return profile.search_url_template.replace("{q}", q)
