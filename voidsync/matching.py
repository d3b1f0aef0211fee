"""Provider identifier resolution.

Every adapter needs to turn a :class:`~voidsync.models.Project` into the
identifier its provider understands (a NEAR account, a DeFiLlama slug, a
Mintbase store, a DAO contract). Strategies are tried in order by a
:class:`ResolverChain`; the first one that yields an identifier wins.

Typical chain: identifier remembered in the provider's previous fragment,
then a table of known mappings, then a heuristic match against the
provider's own listing.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from voidsync.models import Project
from voidsync.store import get_fragment
from voidsync.utils import slugify

# Substring matches shorter than this produce too many false positives ("app", "dao").
MIN_SUBSTRING_LEN = 4

KNOWN_NEAR_ACCOUNTS: dict[str, str] = {
    "ref-finance": "v2.ref-finance.near",
    "burrow": "contract.main.burrow.near",
    "meta-pool": "meta-pool.near",
    "linear-protocol": "linear-protocol.near",
    "aurora": "aurora",
    "sweat-economy": "sweat_welcome.near",
    "paras": "x.paras.near",
    "mintbase": "mintbase1.near",
    "near-social": "social.near",
    "keypom": "v2.keypom.near",
    "here-wallet": "here.storage.near",
    "sender-wallet": "sender.near",
    "hot-wallet": "game.hot.tg",
    "bitte-wallet": "bitte.near",
}

KNOWN_DAO_CONTRACTS: dict[str, str] = {
    "astrodao": "astro.sputnik-dao.near",
    "near-digital-collective": "ndc.sputnik-dao.near",
    "creatives-dao": "creatives.sputnik-dao.near",
    "marketing-dao": "marketing.sputnik-dao.near",
    "human-guild": "humanguild.sputnik-dao.near",
    "near-hispano": "near-hispano.sputnik-dao.near",
    "devgov": "devgovgigs.sputnik-dao.near",
    "open-web-sandbox": "open-web-sandbox.sputnik-dao.near",
    "onboarding-dao": "onboarding-dao.sputnik-dao.near",
}


@dataclass(frozen=True)
class Resolution:
    identifier: str
    strategy: str
    # Listing entry the identifier came from, when a listing was consulted.
    entry: Any = None


class IdentifierStrategy(ABC):
    name: str = "strategy"

    @abstractmethod
    def resolve(self, project: Project) -> Resolution | None:
        ...


class FragmentField(IdentifierStrategy):
    """Read an identifier out of a provider fragment already stored on the project.

    *accept* filters values, e.g. only contract names ending in ``.near``.
    """

    def __init__(self, provider: str, fields: Iterable[str], accept: Callable[[str], bool] | None = None):
        self.provider = provider
        self.fields = tuple(fields)
        self.accept = accept
        self.name = f"fragment:{provider}"

    def resolve(self, project: Project) -> Resolution | None:
        fragment = get_fragment(project, self.provider)
        for field in self.fields:
            value = fragment.get(field)
            if isinstance(value, str) and value.strip():
                value = value.strip()
                if self.accept is None or self.accept(value):
                    return Resolution(value, self.name)
        return None


class KnownMapping(IdentifierStrategy):
    name = "known"

    def __init__(self, mapping: Mapping[str, str]):
        self.mapping = mapping

    def resolve(self, project: Project) -> Resolution | None:
        value = self.mapping.get(project.slug)
        return Resolution(value, self.name) if value else None


class SlugPattern(IdentifierStrategy):
    """Guess an identifier from a naming convention, e.g. ``{slug}.sputnik-dao.near``."""

    name = "pattern"

    def __init__(self, template: str):
        self.template = template

    def resolve(self, project: Project) -> Resolution | None:
        return Resolution(self.template.format(slug=project.slug), self.name) if project.slug else None


def names_equal(project_slug: str, project_name: str, entry_names: Iterable[str]) -> bool:
    """Exact slug or name equality between a project and any of *entry_names*."""
    p_slug = project_slug.lower()
    p_name = project_name.lower().strip()
    return any(
        raw and (slugify(raw) == p_slug or raw.lower().strip() in (p_slug, p_name))
        for raw in entry_names
    )


def names_match(project_slug: str, project_name: str, entry_names: Iterable[str]) -> bool:
    """Slug/name equality, or substring containment for sufficiently long slugs."""
    p_slug = project_slug.lower()
    p_name = project_name.lower().strip()
    for raw in entry_names:
        if not raw:
            continue
        e_slug = slugify(raw)
        if not e_slug:
            continue
        if e_slug == p_slug or raw.lower().strip() in (p_slug, p_name):
            return True
        if len(e_slug) >= MIN_SUBSTRING_LEN and len(p_slug) >= MIN_SUBSTRING_LEN:
            if e_slug in p_slug or p_slug in e_slug:
                return True
    return False


class ListingMatch(IdentifierStrategy):
    """Match a project against a provider listing by slugified name.

    *names* returns the candidate strings of a listing entry (name, slug, id)
    and *identifier* returns the provider identifier of a matching entry.
    Exact matches anywhere in the listing win over substring matches.
    """

    name = "listing"

    def __init__(
        self,
        entries: Iterable[Any],
        names: Callable[[Any], Iterable[str]],
        identifier: Callable[[Any], str],
    ):
        self.entries = list(entries)
        self.names = names
        self.identifier = identifier

    def resolve(self, project: Project) -> Resolution | None:
        p_slug = project.slug or ""
        p_name = project.name or ""
        for entry in self.entries:
            if names_equal(p_slug, p_name, self.names(entry)):
                return Resolution(self.identifier(entry), self.name, entry)
        for entry in self.entries:
            if names_match(p_slug, p_name, self.names(entry)):
                return Resolution(self.identifier(entry), self.name, entry)
        return None


class ResolverChain:
    def __init__(self, strategies: Iterable[IdentifierStrategy]):
        self.strategies = list(strategies)

    def resolve(self, project: Project) -> Resolution | None:
        for strategy in self.strategies:
            found = strategy.resolve(project)
            if found is not None:
                return found
        return None


def near_account_resolver() -> ResolverChain:
    """NEAR account lookup shared by the FastNEAR, NearBlocks and Pikespeak adapters."""
    return ResolverChain([
        FragmentField("fastnear", ["account_id"]),
        FragmentField("ecosystem", ["nearAccountId"]),
        FragmentField("ecosystem", ["contract"], accept=lambda v: v.endswith(".near")),
        FragmentField("ecosystem", ["accountId"]),
        KnownMapping(KNOWN_NEAR_ACCOUNTS),
    ])
