"""Category registry: the fixed topical catalog and its reconciliation.

The catalog is declarative. Every run upserts all entries by ``slug`` so the
table converges on this list no matter how often reconciliation runs.
Removing a category is a separate, explicit step
(:func:`remove_obsolete_category`) because it orphans projects and deletes
their opportunities.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from voidsync.models import Category, Opportunity, Project

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategorySpec:
    slug: str
    name: str
    description: str
    icon: str
    is_strategic: bool = False
    strategic_multiplier: float = 1.0


CATALOG: tuple[CategorySpec, ...] = (
    # Strategic categories
    CategorySpec("ai-agents", "AI & Agents", "AI agents, inference, autonomous systems leveraging Shade Agents", "🤖", True, 2.0),
    CategorySpec("privacy", "Privacy", "Private transactions, identity protection, ZK proofs", "🔒", True, 2.0),
    CategorySpec("intents", "Intents & Chain Abstraction", "Intent solvers, cross-chain operations, account abstraction", "🔗", True, 2.0),
    CategorySpec("rwa", "Real World Assets", "Oracles, RWA tokenization, payments, real-world bridges", "🌍", True, 2.0),
    CategorySpec("data-analytics", "Data & Analytics", "On-chain analytics, data indexing, blockchain intelligence", "📊", True, 1.5),
    CategorySpec("chain-signatures", "Chain Signatures", "MPC-powered cross-chain signing, multi-chain wallets, transaction relaying", "✍️", True, 2.0),
    # Standard categories
    CategorySpec("defi", "DeFi", "Lending, borrowing, yield aggregation, derivatives, stablecoins", "💰"),
    CategorySpec("dex-trading", "DEX & Trading", "Decentralized exchanges, AMMs, order books, trading tools", "📈"),
    CategorySpec("gaming", "Gaming & Metaverse", "Blockchain games, metaverse worlds, GameFi, play-to-earn", "🎮"),
    CategorySpec("nfts", "NFTs & Digital Art", "NFT marketplaces, minting tools, digital art platforms, collectibles", "🎨"),
    CategorySpec("daos", "DAOs & Governance", "DAO tooling, governance frameworks, treasury management, voting", "🏛️"),
    CategorySpec("social", "Social & Creator Economy", "Social platforms, creator tools, content monetization, community", "💬"),
    CategorySpec("dev-tools", "Developer Tools", "SDKs, testing frameworks, debugging tools, smart contract libraries", "🛠️"),
    CategorySpec("wallets", "Wallets & Identity", "Wallet apps, account management, identity, authentication", "👛"),
    CategorySpec("education", "Education & Onboarding", "Learning platforms, tutorials, bootcamps, developer education", "📚"),
    CategorySpec("infrastructure", "Infrastructure", "RPC nodes, indexers, explorers, validators, storage", "🔧"),
    CategorySpec("meme-tokens", "Meme Coins & Tokens", "Fungible tokens, meme coins, tax/burn/reflection mechanics, fair launches", "🪙"),
    CategorySpec("staking-rewards", "Staking & Rewards", "Staking pools, lockup contracts, reward distribution, yield strategies", "💎"),
    CategorySpec("prediction-markets", "Prediction Markets", "Binary betting, outcome markets, oracle-based resolution, prediction pools", "🎰"),
    CategorySpec("launchpads", "Launchpads & IDOs", "Token sale platforms, IDO infrastructure, whitelist management, vesting", "📱"),
    CategorySpec("bridges", "Bridges & Cross-Chain", "Cross-chain bridges, wrapped tokens, message relaying, interoperability", "🌉"),
)

# Slugs retired from the catalog; their projects are re-categorized by the ecosystem sync.
OBSOLETE_SLUGS: tuple[str, ...] = ("consumer",)


def reconcile_categories(session: Session, catalog: tuple[CategorySpec, ...] = CATALOG) -> dict[str, int]:
    """Insert or update every catalog entry by slug (caller must commit)."""
    existing = {c.slug: c for c in session.execute(select(Category)).scalars().all()}
    created = updated = 0
    for entry in catalog:
        values = asdict(entry)
        row = existing.get(entry.slug)
        if row is None:
            session.add(Category(**values))
            created += 1
            continue
        for field, value in values.items():
            setattr(row, field, value)
        updated += 1
    session.flush()
    return {"count": len(catalog), "created": created, "updated": updated}


def remove_obsolete_category(session: Session, slug: str) -> bool:
    """Cascade-remove a retired category (caller must commit).

    Projects in the category are orphaned (``category_id`` set to NULL), its
    opportunities are deleted, then the category row itself. Returns ``False``
    when no category has that slug.
    """
    category = session.execute(select(Category).where(Category.slug == slug)).scalars().first()
    if category is None:
        return False
    orphaned = session.execute(
        update(Project).where(Project.category_id == category.id).values(category_id=None)
    ).rowcount
    session.execute(delete(Opportunity).where(Opportunity.category_id == category.id))
    session.delete(category)
    session.flush()
    log.info("Removed obsolete category %s (%d projects orphaned)", slug, orphaned or 0)
    return True


def category_ids_by_slug(session: Session) -> dict[str, int]:
    return dict(session.execute(select(Category.slug, Category.id)).all())


class CategoryStage:
    """Pipeline stage: reconcile the catalog, then run the obsolete-category cleanup."""

    name = "categories"

    def __init__(self, catalog: tuple[CategorySpec, ...] = CATALOG, obsolete: tuple[str, ...] = OBSOLETE_SLUGS):
        self.catalog = catalog
        self.obsolete = obsolete

    async def run(self, session: Session) -> dict:
        result = reconcile_categories(session, self.catalog)
        result["removed"] = [slug for slug in self.obsolete if remove_obsolete_category(session, slug)]
        session.commit()
        return result
