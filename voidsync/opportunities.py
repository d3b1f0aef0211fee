"""Opportunity generator: category stats -> gap score -> upserted opportunities.

Each category has a small set of opportunity templates (title, pitch,
suggested features, difficulty and a multiplier on the category's gap score).
Categories without templates get one generic opportunity. Rows are upserted
by ``(category_id, title)`` so repeated runs refresh scores in place.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from voidsync.gap_score import CategoryStats, GapScoreBreakdown, score
from voidsync.models import Category, Opportunity, Project
from voidsync.store import get_fragment
from voidsync.utils import as_utc, to_number, utc_now

log = logging.getLogger(__name__)

DEV_ACTIVE_WINDOW = timedelta(days=90)

ADVANCED_CATEGORIES = frozenset({"ai-agents", "privacy", "intents", "chain-signatures", "bridges", "infrastructure"})
BEGINNER_CATEGORIES = frozenset({"education", "social", "meme-tokens"})


@dataclass(frozen=True)
class OpportunityTemplate:
    title: str
    description: str
    features: tuple[str, ...]
    difficulty: str
    score_multiplier: float = 1.0


T = OpportunityTemplate

TEMPLATES: dict[str, tuple[OpportunityTemplate, ...]] = {
    "ai-agents": (
        T("Autonomous AI Agent Marketplace",
          "A decentralized marketplace for discovering, deploying, and monetizing autonomous AI agents built on NEAR Shade Agents with TEE-based execution.",
          ("Agent discovery and rating system", "TEE-based secure execution via Shade Agents", "Pay-per-use agent monetization", "Multi-model orchestration dashboard"),
          "advanced", 1.0),
        T("AI-Powered Smart Contract Auditor",
          "An AI agent that automatically audits NEAR smart contracts for vulnerabilities, gas optimization opportunities, and best practice violations.",
          ("Automated vulnerability scanning", "Gas optimization suggestions", "Natural language audit reports", "CI/CD integration for pre-deploy checks"),
          "advanced", 0.95),
        T("On-Chain AI Inference Network",
          "A decentralized compute network for running AI model inference on-chain, enabling trustless AI predictions for DeFi, gaming, and governance.",
          ("Decentralized GPU compute marketplace", "Verifiable inference proofs", "Model registry and versioning", "API gateway for dApp integration"),
          "advanced", 0.9),
    ),
    "privacy": (
        T("Private DeFi Protocol",
          "A privacy-preserving DeFi suite enabling confidential swaps, lending, and yield farming using zero-knowledge proofs on NEAR.",
          ("ZK-proof based private swaps", "Confidential lending pools", "Shielded yield vaults", "Compliance-friendly selective disclosure"),
          "advanced", 1.0),
        T("Decentralized Identity & Credentials",
          "A self-sovereign identity platform on NEAR that lets users prove credentials (age, KYC, membership) without revealing personal data.",
          ("ZK credential verification", "Selective disclosure proofs", "Cross-chain identity portability", "Verifiable credential issuance tools"),
          "advanced", 0.95),
    ),
    "intents": (
        T("Intent Solver Network",
          "A competitive solver network for NEAR Intents that finds optimal execution paths for user transactions across multiple chains and protocols.",
          ("Multi-chain intent resolution", "Solver competition framework", "Gas-optimized routing", "Intent composability engine"),
          "advanced", 1.0),
        T("Cross-Chain Asset Bridge",
          "A seamless bridge leveraging NEAR Chain Signatures for trustless asset transfers between NEAR, Ethereum, Bitcoin, and other chains.",
          ("Chain Signatures integration", "Multi-chain liquidity pools", "Real-time bridging status", "Automated slippage protection"),
          "advanced", 0.95),
        T("Universal Account Abstraction Layer",
          "An account abstraction SDK that lets users interact with any blockchain using a single NEAR account, powered by Chain Abstraction.",
          ("Single-account multi-chain access", "Social recovery and session keys", "Gas sponsorship for new users", "SDK for dApp developers"),
          "intermediate", 0.9),
    ),
    "rwa": (
        T("Real Estate Tokenization Platform",
          "A platform for fractional ownership of real estate through NEAR-based tokens, with automated rental income distribution.",
          ("Property tokenization framework", "Automated dividend distribution", "Secondary market trading", "Legal compliance oracle"),
          "intermediate", 1.0),
        T("Supply Chain Verification System",
          "An end-to-end supply chain tracking system using NEAR for provenance verification, from raw materials to consumer products.",
          ("IoT device integration", "Immutable provenance records", "QR-based consumer verification", "Multi-party attestation"),
          "intermediate", 0.95),
        T("NEAR-Native Payments Gateway",
          "A merchant payment processor enabling businesses to accept NEAR and stablecoin payments with instant fiat off-ramps.",
          ("POS integration SDK", "Instant stablecoin settlement", "Multi-currency support", "Invoice and billing automation"),
          "beginner", 0.9),
    ),
    "data-analytics": (
        T("NEAR Ecosystem Intelligence Dashboard",
          "A comprehensive analytics platform tracking NEAR ecosystem health: TVL flows, developer activity, user growth, and protocol metrics.",
          ("Real-time TVL tracking", "Developer activity heatmaps", "Cross-protocol comparison tools", "Custom alert system"),
          "intermediate", 1.0),
        T("On-Chain Data Indexing Service",
          "A high-performance indexing service for NEAR blockchain data, providing GraphQL APIs for dApp developers to query historical and real-time data.",
          ("Sub-second query latency", "GraphQL and REST APIs", "Custom indexer deployment", "WebSocket real-time subscriptions"),
          "advanced", 0.95),
    ),
    "defi": (
        T("Cross-Chain Yield Aggregator",
          "An intelligent yield optimization platform that automatically moves assets across NEAR and other chains to maximize returns.",
          ("Auto-compounding vaults", "Risk-adjusted strategy selection", "Cross-chain yield routing", "Portfolio analytics dashboard"),
          "intermediate", 1.0),
        T("Undercollateralized Lending Protocol",
          "A reputation-based lending protocol on NEAR that uses on-chain credit scoring to offer reduced collateral requirements.",
          ("On-chain credit scoring", "Graduated collateral tiers", "Flash loan prevention", "Liquidation insurance pool"),
          "advanced", 0.95),
        T("Structured DeFi Products",
          "A platform for creating and trading structured financial products like options, perpetuals, and yield tranches on NEAR.",
          ("Options pricing engine", "Perpetual futures with NEAR-native settlement", "Yield tranching (senior/junior)", "Risk analytics dashboard"),
          "advanced", 0.9),
    ),
    "dex-trading": (
        T("NEAR-Native Order Book DEX",
          "A high-performance central limit order book DEX leveraging NEAR sub-second finality for a CEX-like trading experience.",
          ("On-chain order book with sub-600ms matching", "Advanced order types (limit, stop, trailing)", "Trading API for bots", "Real-time depth charts"),
          "advanced", 1.0),
        T("DEX Aggregator & Best Execution Router",
          "A trade routing engine that splits orders across multiple NEAR DEXs to find the best price with minimal slippage.",
          ("Multi-DEX price comparison", "Smart order routing", "MEV protection", "Transaction cost estimation"),
          "intermediate", 0.95),
    ),
    "gaming": (
        T("Blockchain Gaming SDK for NEAR",
          "A game developer SDK that makes it easy to integrate NEAR wallets, NFT items, and token economies into Unity and Unreal Engine games.",
          ("Unity and Unreal Engine plugins", "In-game wallet integration", "NFT item minting and trading", "Player progression on-chain"),
          "intermediate", 1.0),
        T("Play-to-Earn Game Platform",
          "A gaming platform where players earn NEAR tokens and NFTs through skill-based gameplay, with anti-bot measures and fair reward distribution.",
          ("Skill-based reward distribution", "Anti-bot Sybil resistance", "Tournament and leaderboard system", "NFT crafting and evolution"),
          "intermediate", 0.95),
        T("Metaverse World Builder",
          "A no-code platform for creating and deploying 3D metaverse experiences on NEAR with land ownership, social features, and a creator economy.",
          ("Drag-and-drop 3D editor", "Land NFT ownership", "Avatar customization system", "In-world commerce and events"),
          "beginner", 0.9),
    ),
    "nfts": (
        T("AI-Generative NFT Platform",
          "An NFT creation platform that uses AI to help artists generate, remix, and mint unique digital art with provable on-chain provenance.",
          ("AI art generation tools", "On-chain provenance and royalties", "Collaborative creation features", "Auction and fixed-price marketplace"),
          "intermediate", 1.0),
        T("Dynamic NFT Framework",
          "A framework for creating NFTs that evolve over time based on on-chain events, oracles, or user interactions, turning them into living digital assets.",
          ("Event-driven NFT mutations", "Oracle-connected dynamic traits", "Composable NFT standards", "Visual evolution timeline"),
          "intermediate", 0.95),
    ),
    "daos": (
        T("DAO Operating System",
          "A full-stack DAO management platform for NEAR with proposal creation, voting, treasury management, and contributor compensation.",
          ("Proposal templates and workflows", "Quadratic and conviction voting", "Treasury multi-sig with spending limits", "Contributor reputation tracking"),
          "intermediate", 1.0),
        T("Cross-DAO Collaboration Hub",
          "A platform enabling DAOs on NEAR to collaborate on shared initiatives, pool resources, and coordinate governance across organizations.",
          ("Inter-DAO proposal system", "Shared treasury pools", "Cross-DAO delegate voting", "Collaboration analytics"),
          "intermediate", 0.95),
    ),
    "social": (
        T("Decentralized Social Media Platform",
          "A censorship-resistant social platform on NEAR where users own their content, social graph, and earn from engagement.",
          ("User-owned content and social graph", "Token-gated communities", "Creator tipping and subscriptions", "Content moderation DAO"),
          "intermediate", 1.0),
        T("Creator Monetization Toolkit",
          "A suite of tools for content creators to monetize on NEAR: memberships, digital products, tipping, and revenue sharing with collaborators.",
          ("Subscription NFT memberships", "Digital product storefront", "Revenue splitting contracts", "Fan engagement analytics"),
          "beginner", 0.95),
    ),
    "dev-tools": (
        T("NEAR Smart Contract IDE",
          "A browser-based IDE for writing, testing, and deploying NEAR smart contracts in Rust and JavaScript with built-in debugging and simulation.",
          ("Browser-based code editor with LSP", "Contract simulation sandbox", "One-click testnet deployment", "Gas profiling and optimization hints"),
          "intermediate", 1.0),
        T("Smart Contract Testing Framework",
          "A comprehensive testing framework for NEAR contracts with property-based testing, fuzzing, gas benchmarking, and CI integration.",
          ("Property-based testing", "Automated fuzzing", "Gas benchmarking suite", "GitHub Actions integration"),
          "intermediate", 0.95),
        T("No-Code dApp Builder",
          "A visual builder that lets non-developers create NEAR dApps by connecting pre-built smart contract, UI and wallet components.",
          ("Drag-and-drop UI builder", "Pre-built contract templates", "Wallet connection wizard", "One-click mainnet deployment"),
          "beginner", 0.9),
    ),
    "wallets": (
        T("Social Recovery Smart Wallet",
          "A next-gen NEAR wallet with social recovery, session keys, and biometric auth, with no seed phrases needed.",
          ("Social recovery via trusted contacts", "Biometric authentication", "Session keys for dApp interactions", "Transaction simulation previews"),
          "intermediate", 1.0),
        T("Multi-Chain Portfolio Manager",
          "A unified portfolio app that tracks assets across NEAR and other chains via Chain Signatures, with DeFi position management.",
          ("Cross-chain asset tracking", "DeFi position aggregation", "Profit/loss analytics", "Tax reporting export"),
          "intermediate", 0.95),
    ),
    "education": (
        T("Learn-to-Earn NEAR Academy",
          "An interactive learning platform where developers earn NEAR tokens and NFT credentials by completing courses on NEAR development.",
          ("Interactive coding challenges", "NFT completion certificates", "Token rewards for course completion", "Peer review system"),
          "beginner", 1.0),
        T("NEAR Developer Onboarding Portal",
          "A guided onboarding experience for new NEAR developers with project scaffolding, tutorials, and a path from zero to deployed dApp.",
          ("Step-by-step guided tutorials", "Project template generator", "Testnet faucet integration", "Community mentorship matching"),
          "beginner", 0.95),
    ),
    "infrastructure": (
        T("Decentralized RPC Network",
          "A decentralized, incentivized RPC node network for NEAR that provides high-availability endpoints with geographic load balancing.",
          ("Incentivized node operators", "Geographic load balancing", "Rate limiting and API key management", "Uptime monitoring dashboard"),
          "advanced", 1.0),
        T("NEAR Block Explorer 2.0",
          "A next-generation block explorer with advanced search, contract verification, token analytics, and developer-friendly API.",
          ("Advanced transaction search", "Smart contract source verification", "Token holder analytics", "REST and WebSocket APIs"),
          "intermediate", 0.95),
    ),
}


def difficulty_for(category_slug: str) -> str:
    if category_slug in ADVANCED_CATEGORIES:
        return "advanced"
    if category_slug in BEGINNER_CATEGORIES:
        return "beginner"
    return "intermediate"


def round_half_up(value: float) -> int:
    # round() rounds halves to even; scores round 92.5 up to 93
    return int(math.floor(round(value, 6) + 0.5))


def competition_level(active_projects: int) -> str:
    if active_projects <= 2:
        return "low"
    if active_projects <= 10:
        return "medium"
    return "high"


def templates_for(category: Category) -> tuple[OpportunityTemplate, ...]:
    found = TEMPLATES.get(category.slug)
    if found:
        return found
    return (
        OpportunityTemplate(
            title=f"Build {category.name} on NEAR",
            description=f"An opportunity to build innovative solutions in the {category.name} space on NEAR Protocol.",
            features=("Core protocol feature", "User dashboard", "API integration", "Analytics"),
            difficulty=difficulty_for(category.slug),
        ),
    )


def reasoning_for(category: Category, active: int, total_tvl: float, template: OpportunityTemplate) -> str:
    tvl = f"${total_tvl / 1_000_000:.1f}M in TVL" if total_tvl > 0 else "minimal TVL"
    strategic = (
        " This is a strategic priority area for NEAR Protocol, attracting extra ecosystem support."
        if category.is_strategic else ""
    )
    gap = template.description.split(".")[0].lower()
    return (
        f"The {category.name} category on NEAR has {active} active project{'s' if active != 1 else ''} "
        f'with {tvl}.{strategic} "{template.title}" addresses a specific gap: {gap}.'
    )


def category_stats(category: Category, projects: list[Project], as_of: datetime | None = None) -> CategoryStats:
    """Aggregate the inputs of the gap score for one category's projects."""
    as_of = as_of or utc_now()
    cutoff = as_of - DEV_ACTIVE_WINDOW
    tvls = tuple(to_number(p.tvl_usd) for p in projects)
    dev_active = 0
    for p in projects:
        last_commit = as_utc(p.last_github_commit)
        if last_commit is not None and last_commit >= cutoff:
            dev_active += 1
    return CategoryStats(
        total_projects=len(projects),
        active_projects=sum(1 for p in projects if p.is_active),
        total_tvl=sum(tvls),
        project_tvls=tvls,
        activity_volume=sum(to_number(get_fragment(p, "nearblocks").get("txn_count")) for p in projects),
        dev_active_projects=dev_active,
        is_strategic=bool(category.is_strategic),
        strategic_multiplier=to_number(category.strategic_multiplier, 1.0),
    )


def score_category(session: Session, category: Category, as_of: datetime | None = None) -> tuple[CategoryStats, GapScoreBreakdown]:
    projects = list(session.execute(select(Project).where(Project.category_id == category.id)).scalars().all())
    stats = category_stats(category, projects, as_of)
    return stats, score(stats)


def generate(session: Session, as_of: datetime | None = None) -> dict[str, int]:
    """Score every category and upsert its opportunities (caller must commit)."""
    created = updated = 0
    categories = session.execute(select(Category).order_by(Category.id)).scalars().all()
    for category in categories:
        stats, breakdown = score_category(session, category, as_of)
        competition = competition_level(stats.active_projects)
        existing = {
            o.title: o
            for o in session.execute(
                select(Opportunity).where(Opportunity.category_id == category.id)
            ).scalars().all()
        }
        for template in templates_for(category):
            values = {
                "description": template.description,
                "reasoning": reasoning_for(category, stats.active_projects, stats.total_tvl, template),
                "gap_score": min(round_half_up(breakdown.final_score * template.score_multiplier), 100),
                "demand_score": round(breakdown.demand_level, 1),
                "competition_level": competition,
                "difficulty": template.difficulty,
                "suggested_features": list(template.features),
            }
            row = existing.get(template.title)
            if row is None:
                row = Opportunity(category_id=category.id, title=template.title, **values)
                session.add(row)
                existing[template.title] = row
                created += 1
            else:
                for field, value in values.items():
                    setattr(row, field, value)
                updated += 1
        log.debug("Scored %s: %.1f (%s competition)", category.slug, breakdown.final_score, competition)
    session.flush()
    return {"created": created, "updated": updated, "total": created + updated}


class OpportunityStage:
    name = "opportunities"

    async def run(self, session: Session) -> dict:
        result = generate(session)
        session.commit()
        return result
