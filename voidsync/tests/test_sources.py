"""Provider adapter tests against mocked HTTP transports."""
from __future__ import annotations

import json
from datetime import UTC, datetime

import httpx
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from voidsync.categories import category_ids_by_slug, reconcile_categories
from voidsync.config import Settings
from voidsync.models import Base, Category, Project
from voidsync.pacing import TokenBucket
from voidsync.sources.astrodao import AstroDaoAdapter, count_members, decode_view_result
from voidsync.sources.base import ProviderError
from voidsync.sources.defillama import DefiLlamaAdapter, assign_protocols
from voidsync.sources.ecosystem import EcosystemAdapter, classify
from voidsync.sources.fastnear import FastNearAdapter
from voidsync.sources.github import GithubAdapter, parse_github_url
from voidsync.sources.mintbase import MintbaseAdapter
from voidsync.sources.nearblocks import NearBlocksAdapter
from voidsync.sources.pikespeak import PikespeakAdapter
from voidsync.store import get_fragment, get_project_by_slug, merge_fragment, set_scalar, upsert_project


# ---------------------------------------------------------------------------
# Fixtures & helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def session():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    sess = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    reconcile_categories(sess)
    sess.commit()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite://",
        github_token="gh-token",
        nearblocks_api_key="",
        pikespeak_api_key="pk-key",
        mintbase_api_key="",
        request_timeout_seconds=5.0,
    )


def _adapter(cls, handler, settings):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return cls(client, settings, pacer=TokenBucket(1_000_000.0))


def _project(session, slug, category=None, **fields):
    if category is not None:
        fields["category_id"] = category_ids_by_slug(session)[category]
    project, _ = upsert_project(session, slug, name=fields.pop("name", slug), **fields)
    session.commit()
    return project


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content)


def _never_called(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


# ---------------------------------------------------------------------------
# Tests: shared request plumbing
# ---------------------------------------------------------------------------


class TestRequest:
    @pytest.mark.asyncio
    async def test_http_error_status_becomes_provider_error(self, settings):
        adapter = _adapter(FastNearAdapter, lambda r: httpx.Response(503), settings)
        with pytest.raises(ProviderError) as info:
            await adapter.get_json("https://api.fastnear.com/status")
        assert info.value.status_code == 503
        assert info.value.provider == "fastnear"

    @pytest.mark.asyncio
    async def test_timeout_becomes_provider_error(self, settings):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        adapter = _adapter(FastNearAdapter, handler, settings)
        with pytest.raises(ProviderError, match="timeout"):
            await adapter.get_json("https://api.fastnear.com/status")

    @pytest.mark.asyncio
    async def test_undecodable_body(self, settings):
        adapter = _adapter(FastNearAdapter, lambda r: httpx.Response(200, text="<html>"), settings)
        with pytest.raises(ProviderError, match="undecodable"):
            await adapter.get_json("https://api.fastnear.com/status")

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self, settings):
        adapter = _adapter(
            MintbaseAdapter, lambda r: httpx.Response(200, json={"errors": [{"message": "bad field"}]}), settings
        )
        with pytest.raises(ProviderError, match="bad field"):
            await adapter.query("{ x }")


# ---------------------------------------------------------------------------
# Tests: ecosystem registry
# ---------------------------------------------------------------------------


ENTITIES = [
    {"slug": "ref-finance", "title": "Ref Finance", "oneliner": "AMM dex on NEAR", "category": "DeFi",
     "nearAccountId": "v2.ref-finance.near", "github": "https://github.com/ref-finance"},
    {"slug": "ref-finance", "title": "Ref Finance duplicate"},
    {"title": ""},
    {"title": "Shade Agents Kit", "oneliner": "AI agents framework", "website": "https://shade.example"},
    {"slug": "old-tool", "title": "Old Tool", "oneliner": "sdk for builders"},
]


class TestEcosystemAdapter:
    def test_classify(self):
        assert classify({"title": "Ref", "oneliner": "AMM dex", "category": "DeFi"}) == "dex-trading"
        assert classify({"title": "Kit", "oneliner": "AI agents framework"}) == "ai-agents"
        assert classify({"title": "Mystery"}) == "infrastructure"
        assert classify({"title": "X", "category": ["NFT", "Art"]}) == "nfts"

    @pytest.mark.asyncio
    async def test_sync_creates_projects(self, session, settings):
        adapter = _adapter(EcosystemAdapter, lambda r: httpx.Response(200, json=ENTITIES), settings)
        result = await adapter.sync(session)

        assert result.total == 5
        assert result.enriched == 3
        assert result.skipped == 2
        assert result.extra["created"] == 3
        ref = get_project_by_slug(session, "ref-finance")
        assert ref.name == "Ref Finance"
        assert ref.category.slug == "dex-trading"
        assert ref.github_url == "https://github.com/ref-finance"
        assert get_fragment(ref, "ecosystem")["nearAccountId"] == "v2.ref-finance.near"
        shade = get_project_by_slug(session, "shade-agents-kit")
        assert shade.category.slug == "ai-agents"
        assert shade.field_sources["is_active"]["provider"] == "ecosystem"

    @pytest.mark.asyncio
    async def test_rerun_keeps_one_row_per_slug(self, session, settings):
        adapter = _adapter(EcosystemAdapter, lambda r: httpx.Response(200, json=ENTITIES), settings)
        await adapter.sync(session)
        again = await adapter.sync(session)
        assert again.extra["created"] == 0
        assert len(session.execute(select(Project)).scalars().all()) == 3

    @pytest.mark.asyncio
    async def test_accepts_object_listing(self, session, settings):
        listing = {"a": {"slug": "a-project", "title": "A Project"}}
        adapter = _adapter(EcosystemAdapter, lambda r: httpx.Response(200, json=listing), settings)
        result = await adapter.sync(session)
        assert result.enriched == 1

    @pytest.mark.asyncio
    async def test_liveness_pass_deactivates_abandoned(self, session, settings):
        old = _project(session, "old-tool", name="Old Tool")
        set_scalar(old, "last_github_commit", datetime(2020, 1, 1, tzinfo=UTC), "github")
        merge_fragment(session, old, "github", {"owner": "old", "repo": None})
        unchecked = _project(session, "never-checked", name="Never Checked")
        session.commit()

        adapter = _adapter(EcosystemAdapter, lambda r: httpx.Response(200, json=ENTITIES), settings)
        result = await adapter.sync(session)

        assert result.extra["deactivated"] == 1
        assert old.is_active is False
        assert unchecked.is_active is True

    @pytest.mark.asyncio
    async def test_unavailable_registry(self, session, settings):
        adapter = _adapter(EcosystemAdapter, lambda r: httpx.Response(500), settings)
        result = await adapter.sync(session)
        assert result.status == "api_unavailable"
        assert result.enriched == 0
        assert session.execute(select(Project)).first() is None


# ---------------------------------------------------------------------------
# Tests: DeFiLlama
# ---------------------------------------------------------------------------


PROTOCOLS = [
    {"name": "Ref Finance", "slug": "ref-finance", "chains": ["Near"], "tvl": 100.0,
     "chainTvls": {"Near": 80.0, "Aurora": 20.0}, "category": "Dexes"},
    {"name": "LiNEAR", "slug": "linear", "chains": ["Near", "Aurora"], "tvl": 50.0},
    {"name": "Uniswap", "slug": "uniswap", "chains": ["Ethereum"], "tvl": 1e9},
]


class TestDefiLlamaAdapter:
    def test_assignment_is_one_to_one(self):
        projects = [
            Project(id=1, slug="burrow-cash-dashboard", name="Burrow Cash Dashboard"),
            Project(id=2, slug="burrow", name="Burrow"),
            Project(id=3, slug="old-burrow", name="Old Burrow"),
        ]
        protocols = [
            {"name": "Burrow", "slug": "burrow"},
            {"name": "Burrow Legacy", "slug": "burrow-legacy"},
        ]
        remembered = {3: "burrow-legacy"}

        claims = assign_protocols(projects, protocols, lambda p: remembered.get(p.id))

        assert {pid: (proto["slug"], how) for pid, (proto, how) in claims.items()} == {
            2: ("burrow", "listing"),
            3: ("burrow-legacy", "fragment:defillama"),
        }

    @pytest.mark.asyncio
    async def test_matches_near_protocols(self, session, settings):
        _project(session, "ref-finance", name="Ref Finance")
        _project(session, "linear-protocol", name="LiNEAR Protocol")
        _project(session, "uniswap", name="Uniswap")
        _project(session, "unrelated", name="Unrelated")

        def handler(request):
            assert request.url.path == "/protocols"
            return httpx.Response(200, json=PROTOCOLS)

        result = await _adapter(DefiLlamaAdapter, handler, settings).sync(session)

        assert (result.enriched, result.skipped, result.total) == (2, 2, 4)
        assert result.extra["near_protocol_count"] == 2
        assert result.extra["unmatched_protocols"] == 0
        assert result.extra["total_tvl"] == 130.0
        ref = get_project_by_slug(session, "ref-finance")
        assert ref.tvl_usd == 80.0
        assert ref.field_sources["tvl_usd"]["provider"] == "defillama"
        assert get_fragment(ref, "defillama")["matched_by"] == "listing"
        assert get_fragment(get_project_by_slug(session, "linear-protocol"), "defillama")["matched_by"] == "known"
        assert get_project_by_slug(session, "uniswap").tvl_usd == 0.0

    @pytest.mark.asyncio
    async def test_protocol_lands_on_one_project(self, session, settings):
        dashboard = _project(session, "burrow-cash-dashboard", name="Burrow Cash Dashboard")
        # left over from an earlier run that matched the dashboard by substring
        set_scalar(dashboard, "tvl_usd", 1_000_000.0, "defillama")
        session.commit()
        _project(session, "burrow", name="Burrow")
        protocols = [{"name": "Burrow", "slug": "burrow", "chains": ["Near"], "chainTvls": {"Near": 1_000_000}}]

        result = await _adapter(DefiLlamaAdapter, lambda r: httpx.Response(200, json=protocols), settings).sync(session)

        assert (result.enriched, result.skipped) == (1, 1)
        assert result.extra["total_tvl"] == 1_000_000.0
        assert result.extra["unmatched_protocols"] == 0
        burrow = get_project_by_slug(session, "burrow")
        assert burrow.tvl_usd == 1_000_000.0
        assert get_fragment(burrow, "defillama")["matched_by"] == "listing"
        assert get_project_by_slug(session, "burrow-cash-dashboard").tvl_usd == 0.0

    @pytest.mark.asyncio
    async def test_substring_match_when_no_exact_name(self, session, settings):
        _project(session, "burrow", name="Burrow")
        protocols = [{"name": "Burrow Cash", "slug": "burrow-cash", "chains": ["Near"], "tvl": 7}]

        result = await _adapter(DefiLlamaAdapter, lambda r: httpx.Response(200, json=protocols), settings).sync(session)

        assert result.enriched == 1
        burrow = get_project_by_slug(session, "burrow")
        assert burrow.tvl_usd == 7.0
        assert get_fragment(burrow, "defillama")["matched_by"] == "substring"

    @pytest.mark.asyncio
    async def test_unavailable(self, session, settings):
        _project(session, "ref-finance")
        result = await _adapter(DefiLlamaAdapter, lambda r: httpx.Response(502), settings).sync(session)
        assert result.status == "api_unavailable"
        assert result.to_dict()["status"] == "api_unavailable"

    @pytest.mark.asyncio
    async def test_malformed_listing_is_unavailable(self, session, settings):
        _project(session, "ref-finance")
        listing = [{"name": "Ref Finance", "slug": "ref-finance", "chains": 3}]
        result = await _adapter(DefiLlamaAdapter, lambda r: httpx.Response(200, json=listing), settings).sync(session)
        assert result.status == "api_unavailable"
        assert "unexpected payload" in result.error


# ---------------------------------------------------------------------------
# Tests: GitHub
# ---------------------------------------------------------------------------


class TestGithubAdapter:
    def test_parse_github_url(self):
        assert parse_github_url("https://github.com/near/near-sdk-rs") == ("near", "near-sdk-rs")
        assert parse_github_url("https://github.com/aurora-is-near/") == ("aurora-is-near", None)
        assert parse_github_url("near/nearcore.git") == ("near", "nearcore")
        assert parse_github_url("") is None

    @pytest.mark.asyncio
    async def test_sync(self, session, settings):
        _project(session, "near-sdk", github_url="https://github.com/near/near-sdk-rs")
        _project(session, "aurora", github_url="https://github.com/aurora-is-near")
        _project(session, "broken", github_url="https://github.com/broken/repo")
        _project(session, "no-github")
        seen_auth = set()

        def handler(request):
            seen_auth.add(request.headers.get("authorization"))
            path = request.url.path
            if path == "/rate_limit":
                return httpx.Response(200, json={"resources": {"core": {"remaining": 4999}}})
            if path == "/repos/near/near-sdk-rs":
                return httpx.Response(200, json={
                    "full_name": "near/near-sdk-rs", "stargazers_count": 400, "forks_count": 200,
                    "open_issues_count": 30, "language": "Rust", "pushed_at": "2026-05-01T00:00:00Z",
                })
            if path == "/orgs/aurora-is-near/repos":
                return httpx.Response(404, json={"message": "Not Found"})
            if path == "/users/aurora-is-near/repos":
                return httpx.Response(200, json=[
                    {"full_name": "aurora-is-near/engine", "stargazers_count": 300, "language": "Rust",
                     "pushed_at": "2026-04-01T00:00:00Z"},
                    {"full_name": "aurora-is-near/docs", "stargazers_count": 10, "forks_count": 4,
                     "language": "MDX", "pushed_at": "2026-05-02T00:00:00Z"},
                ])
            return httpx.Response(500)

        result = await _adapter(GithubAdapter, handler, settings).sync(session)

        assert (result.enriched, result.failed, result.total) == (2, 1, 3)
        assert result.extra["rate_limit_remaining"] == 4999
        assert seen_auth == {"Bearer gh-token"}
        sdk = get_project_by_slug(session, "near-sdk")
        assert sdk.github_stars == 400
        assert sdk.github_language == "Rust"
        aurora = get_project_by_slug(session, "aurora")
        assert aurora.github_stars == 310
        assert aurora.github_language == "Rust"
        assert get_fragment(aurora, "github")["pushed_at"] == "2026-05-02T00:00:00Z"
        assert aurora.last_github_commit is not None

    @pytest.mark.asyncio
    async def test_exhausted_quota(self, session, settings):
        _project(session, "near-sdk", github_url="https://github.com/near/near-sdk-rs")

        def handler(request):
            assert request.url.path == "/rate_limit"
            return httpx.Response(200, json={"resources": {"core": {"remaining": 0}}})

        result = await _adapter(GithubAdapter, handler, settings).sync(session)
        assert result.status == "api_unavailable"
        assert result.enriched == 0

    @pytest.mark.asyncio
    async def test_malformed_rate_limit_is_unavailable(self, session, settings):
        _project(session, "near-sdk", github_url="https://github.com/near/near-sdk-rs")

        def handler(request):
            assert request.url.path == "/rate_limit"
            return httpx.Response(200, json=[{"remaining": 10}])

        result = await _adapter(GithubAdapter, handler, settings).sync(session)
        assert result.status == "api_unavailable"
        assert "rate_limit" in result.error

    @pytest.mark.asyncio
    async def test_malformed_repo_counts_as_failed(self, session, settings):
        _project(session, "near-sdk", github_url="https://github.com/near/near-sdk-rs")
        _project(session, "nearcore", github_url="https://github.com/near/nearcore")

        def handler(request):
            path = request.url.path
            if path == "/rate_limit":
                return httpx.Response(200, json={"rate": {"remaining": 10}})
            if path == "/repos/near/near-sdk-rs":
                return httpx.Response(200, json={"full_name": "near/near-sdk-rs", "stargazers_count": "lots"})
            return httpx.Response(200, json={"full_name": "near/nearcore", "stargazers_count": 2300})

        result = await _adapter(GithubAdapter, handler, settings).sync(session)

        assert (result.enriched, result.failed, result.status) == (1, 1, "ok")
        assert get_project_by_slug(session, "nearcore").github_stars == 2300
        assert get_fragment(get_project_by_slug(session, "near-sdk"), "github") == {}


# ---------------------------------------------------------------------------
# Tests: NEAR account providers
# ---------------------------------------------------------------------------


class TestNearBlocksAdapter:
    @pytest.mark.asyncio
    async def test_stats_and_counts(self, session, settings):
        _project(session, "ref-finance")

        def handler(request):
            if request.url.path == "/v1/stats":
                return httpx.Response(200, json={"stats": [{"total_txns": "1000", "block_height": "123"}]})
            assert request.url.path == "/v1/account/v2.ref-finance.near/txns/count"
            return httpx.Response(200, json={"txns": [{"count": "42"}]})

        result = await _adapter(NearBlocksAdapter, handler, settings).run(session)

        assert result["enriched"] == 1
        assert result["chain_stats"]["total_transactions"] == 1000.0
        fragment = get_fragment(get_project_by_slug(session, "ref-finance"), "nearblocks")
        assert fragment["txn_count"] == 42
        assert fragment["account_id"] == "v2.ref-finance.near"

    @pytest.mark.asyncio
    async def test_unavailable_stats(self, session, settings):
        _project(session, "ref-finance")
        result = await _adapter(NearBlocksAdapter, lambda r: httpx.Response(503), settings).run(session)
        assert result["status"] == "api_unavailable"
        assert result["chain_stats"] is None
        assert result["total"] == 0

    @pytest.mark.asyncio
    async def test_overflowing_count_counts_as_failed(self, session, settings):
        _project(session, "ref-finance")
        _project(session, "paras")

        def handler(request):
            if request.url.path == "/v1/stats":
                return httpx.Response(200, json={"stats": [{"total_txns": "1000"}]})
            if "v2.ref-finance.near" in request.url.path:
                return httpx.Response(200, content=b'{"txns": [{"count": 1e999}]}')
            return httpx.Response(200, json={"txns": [{"count": 5}]})

        result = await _adapter(NearBlocksAdapter, handler, settings).sync(session)

        assert (result.enriched, result.failed, result.status) == (1, 1, "ok")
        assert get_fragment(get_project_by_slug(session, "paras"), "nearblocks")["txn_count"] == 5


class TestFastNearAdapter:
    @pytest.mark.asyncio
    async def test_counts_enriched_failed_skipped(self, session, settings):
        ref = _project(session, "ref-finance")
        merge_fragment(session, ref, "defillama", {"slug": "ref-finance"})
        session.commit()
        _project(session, "paras")
        _project(session, "nobody")

        def handler(request):
            if "x.paras.near" in request.url.path:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={
                "state": {"balance": "2000000000000000000000000", "storage_bytes": 512},
                "tokens": [{"contract_id": "usdt.tether-token.near"}],
                "nfts": [],
                "pools": [{"pool_id": "a.poolv1.near"}],
            })

        result = await _adapter(FastNearAdapter, handler, settings).sync(session)

        assert (result.enriched, result.failed, result.skipped, result.total) == (1, 1, 1, 3)
        fragment = get_fragment(ref, "fastnear")
        assert fragment["balance_near"] == 2.0
        assert fragment["ft_count"] == 1
        assert fragment["staking_pools"] == 1
        assert get_fragment(ref, "defillama")["slug"] == "ref-finance"

    @pytest.mark.asyncio
    async def test_malformed_state_counts_as_failed(self, session, settings):
        _project(session, "ref-finance")
        _project(session, "paras")

        def handler(request):
            if "v2.ref-finance.near" in request.url.path:
                return httpx.Response(200, json={"state": "gone"})
            return httpx.Response(200, json={"state": {"balance": "1000000000000000000000000"}})

        result = await _adapter(FastNearAdapter, handler, settings).sync(session)

        assert (result.enriched, result.failed, result.status) == (1, 1, "ok")
        assert get_fragment(get_project_by_slug(session, "paras"), "fastnear")["balance_near"] == 1.0
        assert get_fragment(get_project_by_slug(session, "ref-finance"), "fastnear") == {}


class TestPikespeakAdapter:
    @pytest.mark.asyncio
    async def test_not_configured(self, session, settings):
        _project(session, "ref-finance")
        unconfigured = settings.model_copy(update={"pikespeak_api_key": ""})
        result = await _adapter(PikespeakAdapter, _never_called, unconfigured).sync(session)
        assert result.status == "not_configured"
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_hot_wallet_failure_is_not_fatal(self, session, settings):
        _project(session, "ref-finance")

        def handler(request):
            assert request.headers["x-api-key"] == "pk-key"
            if request.url.path.startswith("/hot-wallets"):
                return httpx.Response(500)
            return httpx.Response(200, json={"near": 1.5})

        result = await _adapter(PikespeakAdapter, handler, settings).run(session)
        assert result["enriched"] == 1
        assert result["hot_wallets"] == 0
        fragment = get_fragment(get_project_by_slug(session, "ref-finance"), "pikespeak")
        assert fragment["balance"] == {"near": 1.5}


# ---------------------------------------------------------------------------
# Tests: Mintbase
# ---------------------------------------------------------------------------


def _aggregate(count: int) -> dict:
    return {"aggregate": {"count": count}}


class TestMintbaseAdapter:
    @pytest.mark.asyncio
    async def test_nft_category_only(self, session, settings):
        _project(session, "paras", category="nfts", name="Paras")
        _project(session, "genadrop", category="nfts", name="GenaDrop")
        _project(session, "ref-finance", category="dex-trading")

        def handler(request):
            query = _body(request)["query"]
            if "EcosystemStats" in query:
                return httpx.Response(200, json={"data": {
                    "nft_contracts_aggregate": _aggregate(900),
                    "nft_listings_aggregate": _aggregate(50),
                    "nft_tokens_aggregate": _aggregate(10_000),
                }})
            if "query Stores" in query:
                return httpx.Response(200, json={"data": {"nft_contracts": [
                    {"id": "x.paras.near", "name": "Paras", "owner": "paras.near"},
                    {"id": "genadrop.mintbase1.near", "name": "GenaDrop", "owner": "g.near"},
                ]}})
            return httpx.Response(200, json={"data": {"minted": _aggregate(10), "listed": _aggregate(3)}})

        result = await _adapter(MintbaseAdapter, handler, settings).run(session)

        assert result["total"] == 2
        assert result["enriched"] == 2
        assert result["ecosystem_stats"]["total_stores"] == 900
        paras = get_fragment(get_project_by_slug(session, "paras"), "mintbase")
        assert paras["store_id"] == "x.paras.near"
        assert paras["minted_count"] == 10
        assert paras["listed_count"] == 3
        genadrop = get_fragment(get_project_by_slug(session, "genadrop"), "mintbase")
        assert genadrop["store_id"] == "genadrop.mintbase1.near"
        assert get_fragment(get_project_by_slug(session, "ref-finance"), "mintbase") == {}

    @pytest.mark.asyncio
    async def test_unavailable(self, session, settings):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"message": "indexer down"}]})

        result = await _adapter(MintbaseAdapter, handler, settings).sync(session)
        assert result.status == "api_unavailable"
        assert "indexer down" in result.error

    @pytest.mark.asyncio
    async def test_malformed_bootstrap_is_unavailable(self, session, settings):
        _project(session, "paras", category="nfts", name="Paras")

        def handler(request):
            return httpx.Response(200, json={"data": {"nft_contracts_aggregate": ["not", "an", "object"]}})

        result = await _adapter(MintbaseAdapter, handler, settings).sync(session)
        assert result.status == "api_unavailable"
        assert result.enriched == 0

    @pytest.mark.asyncio
    async def test_missing_category(self, session, settings):
        session.delete(session.execute(select(Category).where(Category.slug == "nfts")).scalar_one())
        session.commit()

        def handler(request):
            return httpx.Response(200, json={"data": {}})

        result = await _adapter(MintbaseAdapter, handler, settings).sync(session)
        assert result.status == "error"


# ---------------------------------------------------------------------------
# Tests: AstroDAO
# ---------------------------------------------------------------------------


POLICY = {
    "roles": [
        {"name": "council", "kind": {"Group": ["alice.near", "bob.near"]}},
        {"name": "all", "kind": "Everyone"},
        {"name": "mods", "kind": {"Group": ["bob.near", "carol.near"]}},
    ],
    "proposal_bond": "100000000000000000000000",
    "bounty_bond": "100000000000000000000000",
}


def _view_result(value) -> dict:
    return {"jsonrpc": "2.0", "id": "voidsync", "result": {"result": list(json.dumps(value).encode())}}


class TestAstroDaoAdapter:
    def test_helpers(self):
        assert decode_view_result(list(b'{"a": 1}')) == {"a": 1}
        assert decode_view_result([]) is None
        assert decode_view_result(list(b"not json")) is None
        assert count_members(POLICY) == 3

    @pytest.mark.asyncio
    async def test_sync(self, session, settings):
        _project(session, "marketing-dao", category="daos")
        _project(session, "ghost-dao", category="daos")

        def handler(request):
            body = _body(request)
            if body["method"] == "status":
                return httpx.Response(200, json={"result": {"sync_info": {"latest_block_height": 99}}})
            params = body["params"]
            if params["account_id"] == "ghost-dao.sputnik-dao.near":
                return httpx.Response(200, json={"error": {
                    "name": "HANDLER_ERROR", "cause": {"name": "UNKNOWN_ACCOUNT"},
                }})
            assert params["account_id"] == "marketing.sputnik-dao.near"
            if params["method_name"] == "get_policy":
                return httpx.Response(200, json=_view_result(POLICY))
            return httpx.Response(200, json=_view_result(17))

        result = await _adapter(AstroDaoAdapter, handler, settings).run(session)

        assert (result["enriched"], result["skipped"], result["total"]) == (1, 1, 2)
        assert result["block_height"] == 99
        fragment = get_fragment(get_project_by_slug(session, "marketing-dao"), "astrodao")
        assert fragment["contract_id"] == "marketing.sputnik-dao.near"
        assert fragment["member_count"] == 3
        assert fragment["proposal_count"] == 17
        assert fragment["roles"] == ["council", "all", "mods"]

    @pytest.mark.asyncio
    async def test_rpc_down(self, session, settings):
        _project(session, "marketing-dao", category="daos")
        result = await _adapter(AstroDaoAdapter, lambda r: httpx.Response(503), settings).sync(session)
        assert result.status == "api_unavailable"

    @pytest.mark.asyncio
    async def test_malformed_status_is_unavailable(self, session, settings):
        _project(session, "marketing-dao", category="daos")

        def handler(request):
            assert _body(request)["method"] == "status"
            return httpx.Response(200, json={"result": ["syncing"]})

        result = await _adapter(AstroDaoAdapter, handler, settings).sync(session)
        assert result.status == "api_unavailable"
        assert "bootstrap" in result.error
