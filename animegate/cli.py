"""animegate CLI - catalog browsing, stream extraction and the proxy server."""

import asyncio
import json
import logging
import shutil
import subprocess
from typing import Optional

import click
import questionary
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from animegate import __version__
from animegate.config import get_config, save_config
from animegate.extractor import ExtractionEngine
from animegate.models import CatalogItem, EpisodePage, HomePage, SeriesDetails, StreamDescriptor
from animegate.scrapers import FetchError, Scraper, get_all_scraper_names, get_scraper

console = Console()
log = logging.getLogger("animegate")


# ===== HELPERS =====

def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=verbose)],
    )
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_scraper_instance(name: Optional[str]) -> Scraper:
    name = name or get_config().default_source
    scraper = get_scraper(name)
    if scraper is None:
        raise click.BadParameter(f"unknown source '{name}' (available: {', '.join(get_all_scraper_names())})")
    return scraper


def fetch(coro):
    """Run a scraper call, turning transport failures into a CLI error."""
    try:
        return run_async(coro)
    except FetchError as e:
        raise click.ClickException(f"Fetch failed: {e}")


source_option = click.option(
    "--source", "-s", default=None, type=click.Choice(get_all_scraper_names()), help="Catalog source"
)


# ===== DISPLAY HELPERS =====

def display_items(items: list[CatalogItem], title: str = "Results"):
    """Display a table of catalog items."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="cyan")
    table.add_column("Type", style="green", width=10)
    table.add_column("Eps", style="yellow", width=6)
    table.add_column("ID", style="dim")

    for i, item in enumerate(items, 1):
        table.add_row(str(i), item.title, item.type or "", item.episodes or "", item.id)

    console.print(table)


def display_home(page: HomePage, per_section: int = 10):
    if not page.sections:
        console.print("[yellow]No content found[/]")
        return
    for section in page.sections:
        console.print(f"\n[bold magenta]{section.title}[/] [dim]({section.key})[/]")
        for item in section.items[:per_section]:
            console.print(f"  [cyan]•[/] {item.title} [dim]({item.id})[/]")


def display_details(details: SeriesDetails):
    """Display series details."""
    console.print(Panel(
        f"[bold cyan]{details.title}[/]",
        subtitle=f"[dim]{', '.join(details.genres[:5]) or 'N/A'}[/]",
    ))

    if details.description:
        desc = details.description
        console.print(f"\n[dim]{desc[:300]}{'...' if len(desc) > 300 else ''}[/]\n")

    for season in details.seasons:
        table = Table(title=f"Season {season.season} ({len(season.episodes)} episodes)", show_header=True)
        table.add_column("#", style="green", width=5)
        table.add_column("Title", style="cyan")
        table.add_column("Episode ID", style="dim")
        for ep in season.episodes[:50]:
            table.add_row(ep.number or "", ep.title or "", ep.episode_id)
        if len(season.episodes) > 50:
            console.print(f"[dim](Showing first 50 of {len(season.episodes)} episodes)[/]")
        console.print(table)

    if not details.seasons:
        console.print("[yellow]No episodes found[/]")


def display_servers(page: EpisodePage):
    table = Table(title=page.title, show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Server", style="cyan")
    table.add_column("Language", style="green")
    table.add_column("Category", style="magenta")
    table.add_column("Embed", style="dim")
    for s in page.servers:
        table.add_row(s.id, s.name, s.language or "", s.category or "", s.embed_url or "(needs resolve)")
    console.print(table)


def display_stream(result, proxy_base: Optional[str] = None):
    if not result.ok:
        console.print(f"[red]✗ {result.error}[/] [dim]{result.details or ''}[/]")
        if result.screenshot:
            console.print("[dim](diagnostic screenshot attached, use --json to see it)[/]")
        return

    if result.type == "multi-audio-list":
        for stream in result.streams:
            console.print(f"[green]▶[/] [bold]{stream.language}[/]  {stream.link}")
        return

    console.print(f"[green]▶ {result.type}[/]  {result.file}")
    if result.headers:
        console.print(f"[dim]headers: {json.dumps(result.headers)}[/]")
    if proxy_base:
        console.print(f"[dim]proxied:[/] {proxy_base}")


def find_player(player: str) -> Optional[str]:
    """Find player executable path."""
    for name in (player, f"{player}.exe"):
        if shutil.which(name):
            return name
    return None


# ===== CLI COMMANDS =====

@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, version: bool, verbose: bool):
    """animegate - anime catalog gateway, stream extractor and HLS proxy."""
    if version:
        console.print(f"animegate v{__version__}")
        ctx.exit()

    setup_logging(verbose)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@main.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", "-p", default=None, type=int, help="Port")
@click.option("--debug", is_flag=True, help="Flask debug mode")
def serve(host: Optional[str], port: Optional[int], debug: bool):
    """Run the catalog API and delivery proxy."""
    from animegate.server import create_app

    config = get_config()
    host = host or config.host
    port = port or config.port
    app = create_app(config)

    console.print(Panel(
        f"API   [cyan]http://{host}:{port}/api/<source>?action=...[/]\n"
        f"Proxy [cyan]http://{host}:{port}{config.proxy_path}?url=...[/]",
        title=f"[bold]animegate v{__version__}[/]",
    ))
    app.run(host=host, port=port, threaded=True, debug=debug, use_reloader=False)


@main.command("home")
@source_option
def home_cmd(source: Optional[str]):
    """Show home page sections."""
    scraper = get_scraper_instance(source)
    console.print(f"[dim]Loading home from {scraper.name}...[/]")
    display_home(fetch(scraper.home()))


@main.command()
@click.argument("query")
@source_option
@click.option("--page", default=1, type=int, help="Results page")
def search(query: str, source: Optional[str], page: int):
    """Search a catalog."""
    scraper = get_scraper_instance(source)
    console.print(f"[dim]Searching {scraper.name} for '{query}'...[/]")
    result = fetch(scraper.search(query, page))

    if not result.results:
        console.print("[yellow]No results found[/]")
        return

    p = result.pagination
    display_items(result.results, f"{scraper.name} - page {p.current_page}/{p.total_pages or '?'}")
    if p.has_next_page:
        console.print(f"[dim]More: --page {p.current_page + 1}[/]")


@main.command()
@click.argument("query")
@source_option
def suggest(query: str, source: Optional[str]):
    """Quick suggestions for a partial title."""
    scraper = get_scraper_instance(source)
    items = run_async(scraper.suggestions(query))
    if not items:
        console.print("[yellow]No suggestions[/]")
        return
    for item in items:
        console.print(f"  [cyan]•[/] {item.title} [dim]({item.id})[/]")


@main.command()
@click.argument("ref")
@source_option
def details(ref: str, source: Optional[str]):
    """Show series details and episodes."""
    scraper = get_scraper_instance(source)
    console.print(f"[dim]Fetching details from {scraper.name}...[/]")
    display_details(fetch(scraper.details(ref)))


@main.command()
@click.argument("ref")
@source_option
@click.option("--resolve", is_flag=True, help="Resolve servers that only carry an id")
def episode(ref: str, source: Optional[str], resolve: bool):
    """List the servers of an episode."""
    scraper = get_scraper_instance(source)

    async def do_fetch():
        page = await scraper.episode(ref)
        if resolve:
            for server in page.servers:
                if server.needs_resolution:
                    server.embed_url = await scraper.resolve_server(server)
        return page

    page = fetch(do_fetch())
    if not page.servers:
        console.print("[yellow]No servers found[/]")
        return
    display_servers(page)


@main.command()
@click.argument("url")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
@click.option("--headed", is_flag=True, help="Show the browser window")
def extract(url: str, as_json: bool, headed: bool):
    """Extract a playable stream from an embed URL."""
    config = get_config()
    if headed:
        config.headless = False

    with console.status("[dim]Extracting stream...[/]"):
        result = run_async(ExtractionEngine(config).extract_stream(url))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        display_stream(result)


@main.command()
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option("--source", type=click.Choice(get_all_scraper_names()), help="Set default source")
@click.option("--port", type=int, help="Set server port")
@click.option("--proxy-path", help="Set delivery proxy path")
@click.option("--desidub-proxy", help="Set outbound HTTP proxy for DesiDub")
@click.option("--headless/--headed", default=None, help="Browser visibility for extraction")
def config(show: bool, source: Optional[str], port: Optional[int], proxy_path: Optional[str],
           desidub_proxy: Optional[str], headless: Optional[bool]):
    """View or edit configuration."""
    config = get_config()

    if show or not (source or port or proxy_path or desidub_proxy or headless is not None):
        table = Table(title="Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Default Source", config.default_source)
        table.add_row("Server", f"{config.host}:{config.port}")
        table.add_row("Proxy Path", config.proxy_path)
        table.add_row("DesiDub Proxy", config.desidub_proxy or "(none)")
        table.add_row("Headless", str(config.headless))
        table.add_row("Hostile Hosts", ", ".join(config.hostile_hosts))

        console.print(table)
        return

    if source:
        config.default_source = source
    if port:
        config.port = port
    if proxy_path:
        config.proxy_path = "/" + proxy_path.lstrip("/")
    if desidub_proxy:
        config.desidub_proxy = desidub_proxy
    if headless is not None:
        config.headless = headless

    save_config(config)
    console.print("[green]✓ Configuration saved[/]")


# ===== INTERACTIVE BROWSE =====

def _choose(message: str, choices: list):
    choices = choices + [questionary.Choice(title="[Cancel]", value=None)]
    return questionary.select(message, choices=choices).ask()


@main.command()
@click.argument("query", required=False)
@source_option
@click.option("--player", type=click.Choice(["mpv", "vlc"]), default=None, help="Open the stream in a player")
def browse(query: Optional[str], source: Optional[str], player: Optional[str]):
    """Search, pick an episode and server, and extract its stream."""
    scraper = get_scraper_instance(source)

    if not query:
        query = Prompt.ask("Search query")

    console.print(f"[dim]Searching {scraper.name} for '{query}'...[/]")
    result = fetch(scraper.search(query))
    if not result.results:
        console.print("[yellow]No results found[/]")
        return

    item = _choose("Select title (↑↓ arrows):", [
        questionary.Choice(title=f"{i.title} [{i.type or '?'}]", value=i) for i in result.results[:20]
    ])
    if not item:
        return

    console.print(f"\n[dim]Loading {item.title}...[/]")
    series = fetch(scraper.details(item.url or item.id))
    if not series.seasons:
        console.print("[red]No episodes found[/]")
        return

    season = series.seasons[0]
    if len(series.seasons) > 1:
        season = _choose("Select season:", [
            questionary.Choice(title=f"Season {s.season} ({len(s.episodes)} eps)", value=s) for s in series.seasons
        ])
        if not season:
            return

    ep = _choose("Select episode:", [
        questionary.Choice(title=f"E{e.number or '?'}: {e.title or ''}", value=e) for e in season.episodes
    ])
    if not ep:
        return

    page = fetch(scraper.episode(ep.url or ep.episode_id))
    if not page.servers:
        console.print("[red]No servers found[/]")
        return

    remaining = list(page.servers)
    while remaining:
        server = _choose("Select server:", [
            questionary.Choice(title=f"{s.name} [{s.language or '?'}]", value=s) for s in remaining
        ])
        if not server:
            return
        remaining.remove(server)

        embed = server.embed_url or fetch(scraper.resolve_server(server))
        if not embed:
            console.print("[yellow]Server has no embed URL, try another[/]")
            continue

        with console.status(f"[dim]Extracting from {server.name}...[/]"):
            stream = run_async(ExtractionEngine(scraper.config).extract_stream(embed))
        if stream.ok:
            _play(stream, f"{series.title} - E{ep.number}", player)
            return
        display_stream(stream)
        console.print("[yellow]Extraction failed, try another server[/]")

    console.print("[red]No working servers left[/]")


def _play(stream: StreamDescriptor, title: str, player: Optional[str]):
    """Print the stream, and hand it to a player through the local proxy."""
    from animegate.server import ProxyServer

    if stream.type == "multi-audio-list":
        choice = _choose("Select audio:", [
            questionary.Choice(title=s.language, value=s) for s in stream.streams
        ])
        if not choice:
            return
        stream = StreamDescriptor(type="hls" if ".m3u8" in choice.link else "mp4", file=choice.link)

    server = ProxyServer()
    server.start()
    proxied = server.proxied(stream.file, stream.headers or None)
    display_stream(stream, proxied)

    exe = find_player(player) if player else None
    if player and not exe:
        console.print(f"[red]{player} not found[/]")

    if exe:
        console.print(f"[green]▶ Playing: {title}[/]")
        args = [exe, proxied, f"--title={title}"] if player == "mpv" else [exe, proxied]
        process = subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        try:
            process.wait()
        except KeyboardInterrupt:
            process.terminate()
        return

    console.print("[dim]Proxy running. Press Ctrl+C to stop.[/]")
    try:
        server.server_thread.join()
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
