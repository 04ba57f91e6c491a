import argparse
import json
import logging
from datetime import datetime
from typing import List
from urllib.parse import urlparse

from colorama import init
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from DnsResolver import DnsPythonResolver, ResolverCapability
from TrustEngine import InvalidDomainError, TrustReport, evaluate
from TrustPolicy import Severity, TrustConfig

init(autoreset=True)
console = Console()

APP_NAME = "Domain Trust Checker"
APP_VERSION = "1.0.0"
APP_TAGLINE = "DNS record heuristics for domain trust scoring"
EXIT_WORDS = {"exit", "quit"}


def cli_version_text() -> str:
    return f"{APP_NAME} v{APP_VERSION} | {APP_TAGLINE} | checks=SPF,DMARC,NS,CNAME,A,MX"


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def extract_domain(target: str) -> str:
    candidate = target.strip()
    if not candidate:
        return ""
    if not candidate.lower().startswith(("http://", "https://")):
        candidate = f"http://{candidate}"
    try:
        hostname = urlparse(candidate).hostname
    except ValueError:
        hostname = None
    return hostname or target.strip()


def severity_rich_style(severity: Severity) -> str:
    if severity == Severity.PASS:
        return "bold green"
    if severity == Severity.FAIL:
        return "bold red"
    if severity == Severity.WARN:
        return "bold yellow"
    return "cyan"


def score_rich_style(score: int) -> str:
    if score > 0:
        return "bold green"
    if score < 0:
        return "bold red"
    return "bold yellow"


def print_terminal_report(report: TrustReport):
    console.rule(f"[bold cyan]Domain Trust Report: {report.domain}")

    table = Table(box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("", width=2)
    table.add_column("Check", style="bold cyan")
    table.add_column("Score", justify="right")
    table.add_column("Finding")
    for finding in report.findings:
        style = severity_rich_style(finding.severity)
        table.add_row(
            finding.emoji,
            finding.check.value,
            f"[{style}]{finding.score_delta:+d}[/]",
            finding.message,
        )
    console.print(table)

    style = score_rich_style(report.total_score)
    console.print(Panel(f"[{style}]Total score: {report.total_score:+d}[/]", title="Result", border_style="magenta"))


def generate_report(report: TrustReport, output_file: str = "domain_report.md"):
    checked_at = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    lines: List[str] = []
    lines.append("# Domain Trust Report")
    lines.append("")
    lines.append(f"- Generated: {checked_at}")
    lines.append(f"- Domain: {report.domain}")
    lines.append(f"- Total score: {report.total_score:+d}")
    lines.append("")
    lines.append("## Findings")
    lines.append("")
    lines.append("| | Check | Score | Finding | Evidence |")
    lines.append("|---|---|---:|---|---|")
    for finding in report.findings:
        evidence = ", ".join(finding.raw_evidence).replace("|", "\\|") or "-"
        message = finding.message.replace("|", "\\|")
        lines.append(
            f"| {finding.emoji} | {finding.check.value} | {finding.score_delta:+d} | {message} | {evidence} |"
        )
    lines.append("")

    with open(output_file, "w", encoding="utf-8") as file:
        file.write("\n".join(lines))
    console.print(f"\n[bold green]Markdown report saved →[/bold green] {output_file}")


def analyze_target(target: str, resolver: ResolverCapability, config: TrustConfig, args) -> TrustReport | None:
    domain = extract_domain(target)
    if domain.lower() != target.strip().lower():
        console.print(f"[cyan]Extracted domain '{domain}' from the input.[/cyan]")
    try:
        report = evaluate(domain, resolver, config)
    except InvalidDomainError as error:
        console.print(f"[bold red]Invalid domain:[/bold red] {error}")
        return None

    if args.json:
        console.print_json(json.dumps(report.to_dict(), ensure_ascii=False))
    else:
        print_terminal_report(report)
    if args.markdown_output:
        generate_report(report, args.markdown_output)
    return report


def interactive_loop(resolver: ResolverCapability, config: TrustConfig, args):
    console.print(f"[bold cyan]{APP_NAME} started.[/bold cyan] Type 'exit' to quit.")
    while True:
        try:
            target = console.input("[bold yellow]Domain or URL to analyze:[/bold yellow] ").strip()
        except EOFError:
            return
        if target.lower() in EXIT_WORDS:
            return
        if not target:
            console.print("[yellow]Nothing was entered. Please try again.[/yellow]")
            continue
        analyze_target(target, resolver, config, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Domain Trust Checker (DNS heuristics + Rich terminal report)")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=cli_version_text(),
        help="Show tool version and exit",
    )
    parser.add_argument("domain", nargs="?", help="Domain or URL to check; prompts interactively when omitted")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON instead of a table")
    parser.add_argument("--markdown-output", "--md-output", default="", dest="markdown_output", help="Write a Markdown report to this file")
    parser.add_argument(
        "--nameserver",
        action="append",
        default=None,
        dest="nameservers",
        help="DNS server to query (repeatable); defaults to the system resolver",
    )
    parser.add_argument("--lifetime", type=float, default=None, help="Seconds allowed for each DNS lookup")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds allowed for the whole report")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log each lookup and failure")
    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = TrustConfig.from_env(
            nameservers=tuple(args.nameservers) if args.nameservers else None,
            dns_lifetime=args.lifetime,
            check_timeout=args.timeout,
        )
    except ValueError as exc:
        parser.error(f"Invalid configuration: {exc}")
    resolver = DnsPythonResolver(nameservers=config.nameservers, lifetime=config.dns_lifetime)

    if not args.domain:
        interactive_loop(resolver, config, args)
        return 0

    report = analyze_target(args.domain, resolver, config, args)
    return 0 if report is not None else 2


if __name__ == "__main__":
    raise SystemExit(main())
