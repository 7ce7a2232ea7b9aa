import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from scp_rerank.cache_utils import atomic_write_text
from scp_rerank.config import Settings, load_settings
from scp_rerank.constants import (
    DEFAULT_EMBEDDING_WEIGHT,
    DEFAULT_FETCH_LIMIT,
    DEFAULT_QUERY_ID,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_TAG_WEIGHT,
    REPORT_OUTPUT_PATH,
    VERIFY_TOP_K,
)
from scp_rerank.crawler import CrawlerOptions, ScpCrawler, save_local_articles
from scp_rerank.embedding import EmbeddingGenerator, dry_run_estimates
from scp_rerank.errors import ConfigError, ScpRerankError
from scp_rerank.logging_config import configure_logging, get_logger
from scp_rerank.models import Article, HybridResult, ItemError, SearchCandidate
from scp_rerank.providers import OpenAIClient, build_completion_provider
from scp_rerank.report import (
    DataFetchSummary,
    EmbeddingSummary,
    SearchSummary,
    TaggingSummary,
    create_sample_report_data,
    generate_report,
    load_run_stats,
    record_stage,
)
from scp_rerank.search import HybridSearch, VectorSearch, rank_by_cosine
from scp_rerank.store import SupabaseStore
from scp_rerank.tagging import TagExtractor, estimate_tagging_cost

console = Console()
err_console = Console(stderr=True)
log = get_logger("cli")


def _build_store(settings: Settings) -> SupabaseStore:
    settings.validate("supabase_url")
    if not settings.store_key:
        raise ConfigError(
            "Missing required settings: SUPABASE_SERVICE_ROLE_KEY or SUPABASE_ANON_KEY"
        )
    return SupabaseStore(settings.supabase_url, settings.store_key)


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=console,
        transient=False,
    )


def _print_errors(errors: list[ItemError]) -> None:
    if not errors:
        return
    console.print(f"\n[red]{len(errors)} article(s) failed:[/]")
    for err in errors:
        console.print(f"  [red]✗[/] {err.item_id}: {escape(err.message)}")


async def _load_articles(store: SupabaseStore, args: argparse.Namespace) -> list[Article]:
    articles = await store.list_articles(args.id, args.limit)
    if not articles:
        console.print("[yellow]No articles found. Run `fetch` first.[/]")
    return articles


async def cmd_fetch(args: argparse.Namespace, settings: Settings) -> None:
    options = CrawlerOptions(
        limit=args.limit, save_local=not args.no_save_local, save_db=not args.no_save_db
    )
    with console.status(f"[cyan]Fetching top {options.limit} SCP articles..."):
        async with ScpCrawler() as crawler:
            articles = await crawler.fetch_articles(options.limit)

    for article in articles:
        console.print(
            f"  [green]✓[/] {article.id} [dim]({article.rating:+d})[/] {article.title}"
        )

    if options.save_local:
        path = save_local_articles(articles)
        console.print(f"[dim]Saved {len(articles)} articles to {path}[/]")
    if options.save_db:
        async with _build_store(settings) as store:
            await store.upsert_articles(articles)
        console.print(f"[dim]Upserted {len(articles)} articles to Supabase[/]")

    avg_length = sum(len(a.content) for a in articles) // len(articles) if articles else 0
    record_stage(
        "data_fetch", DataFetchSummary(bool(articles), len(articles), avg_length)
    )
    log.info("fetch_complete", articles=len(articles), avg_content_length=avg_length)


async def cmd_embed(args: argparse.Namespace, settings: Settings) -> None:
    async with _build_store(settings) as store:
        articles = await _load_articles(store, args)
        if not articles:
            return

        if args.dry_run:
            estimates, total_tokens, cost = dry_run_estimates(articles)
            table = Table(title="Embedding dry run")
            table.add_column("Article")
            table.add_column("Chars", justify="right")
            table.add_column("Tokens (est.)", justify="right")
            for e in estimates:
                table.add_row(e.article_id, f"{e.chars:,}", f"{e.tokens:,}")
            console.print(table)
            console.print(
                f"[bold]Total:[/] {total_tokens:,} tokens, estimated cost ${cost:.6f}"
            )
            return

        async with OpenAIClient(settings.require("openai_api_key")) as provider:
            generator = EmbeddingGenerator(provider)
            with _progress() as progress:
                task = progress.add_task("[cyan]Embedding articles...", total=len(articles))
                results, errors, stats = await generator.generate_batch(
                    articles,
                    on_progress=lambda done, total: progress.update(task, completed=done),
                )

        saved = len(results)
        try:
            await store.upsert_embeddings(results)
        except ScpRerankError as e:
            log.error("embedding_save_failed", count=len(results), error=str(e))
            errors.extend(
                ItemError(r.article_id, f"Saving embedding failed: {e}") for r in results
            )
            saved = 0

    _print_errors(errors)
    console.print(
        f"\n[bold green]Embedded {saved}/{stats.total_articles}[/] "
        f"({stats.total_tokens:,} tokens, ${stats.estimated_cost:.6f}, "
        f"{stats.elapsed_seconds:.1f}s)"
    )
    record_stage(
        "embedding",
        EmbeddingSummary(
            saved > 0,
            stats.total_tokens,
            stats.estimated_cost,
            round(stats.elapsed_seconds, 1),
        ),
    )
    log.info(
        "embed_complete",
        success=saved,
        errors=len(errors),
        tokens=stats.total_tokens,
    )


async def cmd_tag(args: argparse.Namespace, settings: Settings) -> None:
    async with _build_store(settings) as store:
        articles = await _load_articles(store, args)
        if not articles:
            return

        if args.dry_run:
            input_tokens, output_tokens, cost = estimate_tagging_cost(
                articles, settings.tagging_provider
            )
            console.print(
                f"[bold]Tagging dry run ({settings.tagging_provider}):[/] "
                f"{len(articles)} articles, ~{input_tokens:,} input / "
                f"~{output_tokens:,} output tokens, estimated cost ${cost:.6f}"
            )
            return

        async with build_completion_provider(settings) as provider:
            extractor = TagExtractor(provider)
            with _progress() as progress:
                task = progress.add_task("[cyan]Extracting tags...", total=len(articles))
                results, errors, stats = await extractor.extract_batch(
                    articles,
                    on_progress=lambda done, total: progress.update(task, completed=done),
                )

        saved = 0
        for result in results:
            try:
                await store.set_tags(result.article_id, result.tags)
            except ScpRerankError as e:
                log.warning("tag_save_failed", article_id=result.article_id, error=str(e))
                errors.append(ItemError(result.article_id, f"Saving tags failed: {e}"))
                continue
            saved += 1
            tags = result.tags
            console.print(
                f"  [green]✓[/] {result.article_id}: [bold]{tags.object_class}[/] "
                f"genre={list(tags.genre)} theme={list(tags.theme)} format={tags.format}"
            )

    _print_errors(errors)
    console.print(
        f"\n[bold green]Tagged {saved}/{stats.total_articles}[/] "
        f"({stats.total_tokens:,} tokens, ${stats.estimated_cost:.6f})"
    )
    for category, values in stats.unique_tags.items():
        console.print(f"  [dim]{category}:[/] {', '.join(values) or '-'}")
    record_stage(
        "tagging",
        TaggingSummary(saved > 0, stats.total_tokens, stats.estimated_cost),
    )
    log.info("tag_complete", success=saved, errors=len(errors))


def _print_vector_results(title: str, results: list[SearchCandidate]) -> None:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Article")
    table.add_column("Title")
    table.add_column("Similarity", justify="right")
    for rank, r in enumerate(results, 1):
        table.add_row(str(rank), r.article_id, r.title, f"{r.similarity_score:.4f}")
    console.print(table)


def _print_hybrid_results(title: str, results: list[HybridResult]) -> None:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Article")
    table.add_column("Title")
    table.add_column("Final", justify="right")
    table.add_column("Embedding", justify="right")
    table.add_column("Tags", justify="right")
    table.add_column("Matched")
    for rank, r in enumerate(results, 1):
        m = r.matched_tags
        matched = [*m.genre, *m.theme]
        if m.object_class:
            matched.insert(0, "class")
        if m.format:
            matched.append("format")
        table.add_row(
            str(rank),
            r.id,
            r.title,
            f"{r.similarity_score:.4f}",
            f"{r.embedding_score:.4f}",
            f"{r.tag_score:.4f}",
            ", ".join(matched),
        )
    console.print(table)


async def cmd_search(args: argparse.Namespace, settings: Settings) -> None:
    summary = SearchSummary()
    try:
        async with _build_store(settings) as store:
            vector_search = VectorSearch(store)
            if not args.hybrid or args.compare:
                response = await vector_search.search(args.id, args.limit)
                summary.vector_search_success = True
                summary.search_time_ms = response.search_time_ms
                _print_vector_results(
                    f"Vector search: {response.query_id} {response.query_title} "
                    f"({response.search_time_ms:.0f}ms)",
                    response.results,
                )
            if args.hybrid or args.compare:
                hybrid = HybridSearch(vector_search, store)
                results = await hybrid.search(
                    args.id,
                    embedding_weight=args.embedding_weight,
                    tag_weight=args.tag_weight,
                    limit=args.limit,
                )
                summary.hybrid_search_success = True
                _print_hybrid_results(
                    f"Hybrid search: {args.id} "
                    f"(embedding {args.embedding_weight}, tags {args.tag_weight})",
                    results,
                )
    finally:
        record_stage("search", summary)


async def cmd_verify(args: argparse.Namespace, settings: Settings) -> None:
    async with _build_store(settings) as store:
        embeddings = await store.list_embeddings()
        titles = {a.id: a.title for a in await store.list_articles()}
    console.print(f"[dim]Loaded {len(embeddings)} embeddings[/]")
    ranked = rank_by_cosine(args.id, embeddings, titles, top_k=args.top)
    _print_vector_results(
        f"Cosine similarity to {args.id} {titles.get(args.id, '')}", ranked
    )


async def cmd_report(args: argparse.Namespace, settings: Settings) -> None:
    data = load_run_stats()
    if data is None:
        console.print("[yellow]No run stats recorded yet, using sample data.[/]")
        data = create_sample_report_data()
    output = Path(args.output)
    atomic_write_text(output, generate_report(data))
    console.print(f"[bold green]Report written to {output}[/]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SCP article recommendation pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("fetch", help="Fetch top-rated articles from the SCP Data API")
    p.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_FETCH_LIMIT,
        help=f"Number of articles to fetch (default: {DEFAULT_FETCH_LIMIT})",
    )
    p.add_argument("--no-save-local", action="store_true", help="Skip data/articles.json")
    p.add_argument("--no-save-db", action="store_true", help="Skip the Supabase upsert")
    p.set_defaults(handler=cmd_fetch)

    for name, handler, help_text in (
        ("embed", cmd_embed, "Generate and store article embeddings"),
        ("tag", cmd_tag, "Extract and store article tags with an LLM"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--dry-run", action="store_true", help="Estimate cost only")
        p.add_argument("--id", help="Process a single article")
        p.add_argument("--limit", type=int, help="Maximum number of articles")
        p.set_defaults(handler=handler)

    p = sub.add_parser("search", help="Find articles similar to a stored article")
    p.add_argument("--id", default=DEFAULT_QUERY_ID, help="Query article id")
    p.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_SEARCH_LIMIT,
        help=f"Number of results (default: {DEFAULT_SEARCH_LIMIT})",
    )
    p.add_argument("--hybrid", action="store_true", help="Re-rank with tag overlap")
    p.add_argument("--compare", action="store_true", help="Show vector and hybrid")
    p.add_argument("--embedding-weight", type=float, default=DEFAULT_EMBEDDING_WEIGHT)
    p.add_argument("--tag-weight", type=float, default=DEFAULT_TAG_WEIGHT)
    p.set_defaults(handler=cmd_search)

    p = sub.add_parser("verify", help="Brute-force cosine check of stored embeddings")
    p.add_argument("--id", default=DEFAULT_QUERY_ID, help="Query article id")
    p.add_argument("--top", type=int, default=VERIFY_TOP_K)
    p.set_defaults(handler=cmd_verify)

    p = sub.add_parser("report", help="Write the Markdown validation report")
    p.add_argument("--output", default=REPORT_OUTPUT_PATH)
    p.set_defaults(handler=cmd_report)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        asyncio.run(args.handler(args, settings))
    except ScpRerankError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}")
        return 1
    except Exception as e:
        log.exception("unhandled_error", command=args.command)
        err_console.print(f"[red]Unexpected error:[/] {escape(str(e))}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
