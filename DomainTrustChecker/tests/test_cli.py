import json

import pytest

import TrustCli as cli
from DnsResolver import FailureClass, RecordKind
from TrustEngine import evaluate


def test_extract_domain_from_url_and_bare_host():
    assert cli.extract_domain("https://login.example.com/path?q=1") == "login.example.com"
    assert cli.extract_domain("example.com/abc") == "example.com"
    assert cli.extract_domain("  example.com  ") == "example.com"
    assert cli.extract_domain("") == ""


def test_cli_version_text_names_the_checks():
    assert "SPF,DMARC,NS,CNAME,A,MX" in cli.cli_version_text()


def test_generate_report_writes_markdown_table(tmp_path, fake_resolver, healthy_answers):
    report = evaluate("example.com", fake_resolver(healthy_answers))
    output = tmp_path / "report.md"

    cli.generate_report(report, str(output))

    text = output.read_text(encoding="utf-8")
    assert text.startswith("# Domain Trust Report")
    assert f"- Total score: {report.total_score:+d}" in text
    assert "| ✅ | SPF | +10 |" in text


def test_analyze_target_prints_json_and_handles_invalid_domain(capsys, fake_resolver):
    args = cli.build_parser().parse_args(["example.com", "--json"])
    resolver = fake_resolver({(RecordKind.MX, "example.com"): FailureClass.TRANSIENT})
    config = cli.TrustConfig()

    report = cli.analyze_target("https://example.com/login", resolver, config, args)
    bad = cli.analyze_target("not a domain", resolver, config, args)

    assert report is not None and report.domain == "example.com"
    assert bad is None
    output = capsys.readouterr().out
    assert '"total_score"' in output
    assert "Invalid domain" in output


def test_print_terminal_report_renders_every_check(capsys, fake_resolver):
    report = evaluate("example.com", fake_resolver())

    cli.print_terminal_report(report)

    output = capsys.readouterr().out
    for check in ("SPF", "DMARC", "NS", "CNAME", "A", "MX"):
        assert check in output
    assert f"Total score: {report.total_score:+d}" in output


def test_main_rejects_bad_environment(monkeypatch):
    monkeypatch.setenv("DOMAINTRUST_DNS_LIFETIME", "fast")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["example.com"])

    assert excinfo.value.code == 2


def test_main_runs_single_domain_with_injected_resolver(monkeypatch, fake_resolver, healthy_answers, tmp_path):
    created = {}

    def build_resolver(nameservers=None, lifetime=None):
        created["nameservers"] = nameservers
        created["lifetime"] = lifetime
        return fake_resolver(healthy_answers)

    monkeypatch.setattr(cli, "DnsPythonResolver", build_resolver)
    output = tmp_path / "out.md"

    code = cli.main(["example.com", "--nameserver", "9.9.9.9", "--lifetime", "1.5", "--markdown-output", str(output)])

    assert code == 0
    assert created == {"nameservers": ("9.9.9.9",), "lifetime": 1.5}
    assert output.exists()


def test_interactive_loop_stops_on_exit(monkeypatch, fake_resolver):
    prompts = iter(["", "example.com", "exit"])
    monkeypatch.setattr(cli.console, "input", lambda *_args, **_kwargs: next(prompts))
    resolver = fake_resolver()
    args = cli.build_parser().parse_args(["--json"])

    cli.interactive_loop(resolver, cli.TrustConfig(), args)

    assert ("TXT", "example.com") in resolver.calls


def test_report_json_round_trips_through_json_module(fake_resolver):
    payload = json.dumps(evaluate("example.com", fake_resolver()).to_dict(), ensure_ascii=False)

    assert json.loads(payload)["domain"] == "example.com"
