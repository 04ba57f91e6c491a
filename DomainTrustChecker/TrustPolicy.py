import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Tuple


class CheckKind(str, Enum):
    SPF = "SPF"
    DMARC = "DMARC"
    NS = "NS"
    CNAME = "CNAME"
    A = "A"
    MX = "MX"


CHECK_ORDER: Tuple[CheckKind, ...] = tuple(CheckKind)


class OutcomeKind(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    RELIABLE = "reliable"
    UNRELIABLE = "unreliable"
    RESOLVES_NORMALLY = "resolves_normally"
    NO_RECORD = "no_record"
    TARGET_UNREACHABLE = "target_unreachable"
    NO_ADDRESSES = "no_addresses"
    MANY_ADDRESSES = "many_addresses"
    STABLE_PROVIDER = "stable_provider"
    UNKNOWN_PROVIDER = "unknown_provider"
    LOOKUP_ERROR = "lookup_error"


VALID_OUTCOMES: Mapping[CheckKind, Tuple[OutcomeKind, ...]] = MappingProxyType(
    {
        CheckKind.SPF: (OutcomeKind.PRESENT, OutcomeKind.ABSENT, OutcomeKind.LOOKUP_ERROR),
        CheckKind.DMARC: (OutcomeKind.PRESENT, OutcomeKind.ABSENT, OutcomeKind.LOOKUP_ERROR),
        CheckKind.NS: (OutcomeKind.RELIABLE, OutcomeKind.UNRELIABLE, OutcomeKind.LOOKUP_ERROR),
        CheckKind.CNAME: (
            OutcomeKind.RESOLVES_NORMALLY,
            OutcomeKind.NO_RECORD,
            OutcomeKind.TARGET_UNREACHABLE,
            OutcomeKind.LOOKUP_ERROR,
        ),
        CheckKind.A: (
            OutcomeKind.NO_ADDRESSES,
            OutcomeKind.MANY_ADDRESSES,
            OutcomeKind.STABLE_PROVIDER,
            OutcomeKind.UNKNOWN_PROVIDER,
            OutcomeKind.LOOKUP_ERROR,
        ),
        CheckKind.MX: (OutcomeKind.PRESENT, OutcomeKind.ABSENT, OutcomeKind.LOOKUP_ERROR),
    }
)


class Severity(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    INFO = "info"

    @property
    def emoji(self) -> str:
        return SEVERITY_EMOJI[self]


SEVERITY_EMOJI: Dict[Severity, str] = {
    Severity.PASS: "✅",
    Severity.FAIL: "❌",
    Severity.WARN: "⚠️",
    Severity.INFO: "ℹ️",
}


def severity_for(outcome: OutcomeKind, score_delta: int) -> Severity:
    if score_delta > 0:
        return Severity.PASS
    if score_delta < 0:
        return Severity.FAIL
    if outcome in {OutcomeKind.LOOKUP_ERROR, OutcomeKind.NO_ADDRESSES}:
        return Severity.WARN
    return Severity.INFO


@dataclass(frozen=True)
class RuleOutcome:
    score_delta: int
    message: str

    def render(self, domain: str, evidence: str = "") -> str:
        return self.message.format(domain=domain, evidence=evidence or "N/A")


RuleTable = Mapping[Tuple[CheckKind, OutcomeKind], RuleOutcome]

DEFAULT_RULE_TABLE: RuleTable = MappingProxyType(
    {
        (CheckKind.SPF, OutcomeKind.PRESENT): RuleOutcome(10, "SPF record is published."),
        (CheckKind.SPF, OutcomeKind.ABSENT): RuleOutcome(-10, "No SPF record is published."),
        (CheckKind.SPF, OutcomeKind.LOOKUP_ERROR): RuleOutcome(0, "SPF lookup failed: {evidence}"),
        (CheckKind.DMARC, OutcomeKind.PRESENT): RuleOutcome(10, "DMARC record is published."),
        (CheckKind.DMARC, OutcomeKind.ABSENT): RuleOutcome(-10, "No DMARC record is published."),
        (CheckKind.DMARC, OutcomeKind.LOOKUP_ERROR): RuleOutcome(0, "DMARC lookup failed: {evidence}"),
        (CheckKind.NS, OutcomeKind.RELIABLE): RuleOutcome(
            10, "Uses a reliable nameserver provider ({evidence})."
        ),
        (CheckKind.NS, OutcomeKind.UNRELIABLE): RuleOutcome(
            -10, "Uses a free or low-reputation nameserver provider ({evidence})."
        ),
        (CheckKind.NS, OutcomeKind.LOOKUP_ERROR): RuleOutcome(0, "NS lookup failed: {evidence}"),
        (CheckKind.CNAME, OutcomeKind.RESOLVES_NORMALLY): RuleOutcome(
            5, "www.{domain} CNAME resolves normally ({evidence})."
        ),
        (CheckKind.CNAME, OutcomeKind.NO_RECORD): RuleOutcome(
            0, "www.{domain} has no CNAME record (served by A/AAAA directly)."
        ),
        (CheckKind.CNAME, OutcomeKind.TARGET_UNREACHABLE): RuleOutcome(
            -15, "www.{domain} CNAME appears to point at a decommissioned service."
        ),
        (CheckKind.CNAME, OutcomeKind.LOOKUP_ERROR): RuleOutcome(0, "CNAME lookup failed: {evidence}"),
        (CheckKind.A, OutcomeKind.NO_ADDRESSES): RuleOutcome(0, "No A records found."),
        (CheckKind.A, OutcomeKind.MANY_ADDRESSES): RuleOutcome(
            -10, "IP addresses look unstable or fast-flux ({evidence})."
        ),
        (CheckKind.A, OutcomeKind.STABLE_PROVIDER): RuleOutcome(
            5, "Uses stable cloud-hosted IP addresses (PTR: {evidence})."
        ),
        (CheckKind.A, OutcomeKind.UNKNOWN_PROVIDER): RuleOutcome(
            0, "A records may not belong to a known cloud provider (PTR: {evidence})."
        ),
        (CheckKind.A, OutcomeKind.LOOKUP_ERROR): RuleOutcome(0, "A lookup failed: {evidence}"),
        (CheckKind.MX, OutcomeKind.PRESENT): RuleOutcome(5, "MX record is published."),
        (CheckKind.MX, OutcomeKind.ABSENT): RuleOutcome(-5, "No MX record is published."),
        (CheckKind.MX, OutcomeKind.LOOKUP_ERROR): RuleOutcome(0, "MX lookup failed: {evidence}"),
    }
)

DEFAULT_NS_RELIABLE_PROVIDERS: FrozenSet[str] = frozenset({"cloudflare", "aws", "azure", "google"})
DEFAULT_IP_STABLE_PROVIDERS: FrozenSet[str] = frozenset({"amazonaws", "azure", "google"})
DEFAULT_FAST_FLUX_THRESHOLD = 5
DEFAULT_DNS_LIFETIME = 4.0
DEFAULT_CHECK_TIMEOUT = 15.0
DEFAULT_MAX_WORKERS = 6

ENV_PREFIX = "DOMAINTRUST_"


def _rule_key_label(key) -> str:
    check, outcome = key
    return f"{getattr(check, 'value', check)}/{getattr(outcome, 'value', outcome)}"


def validate_rule_table(rule_table: RuleTable) -> None:
    expected = {(check, outcome) for check, outcomes in VALID_OUTCOMES.items() for outcome in outcomes}
    present = set(rule_table)
    missing = sorted(_rule_key_label(key) for key in expected - present)
    unknown = sorted(_rule_key_label(key) for key in present - expected)
    if missing:
        raise ValueError(f"Rule table is missing outcomes: {', '.join(missing)}")
    if unknown:
        raise ValueError(f"Rule table has outcomes no check can produce: {', '.join(unknown)}")
    for key, rule in rule_table.items():
        try:
            rule.render("example.com", "evidence")
        except (KeyError, IndexError, ValueError, AttributeError) as error:
            raise ValueError(
                f"Rule {_rule_key_label(key)} has an unusable message template {rule.message!r}: {error!r}"
            ) from error


def _split_env_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


def _env_number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(f"{ENV_PREFIX}{name}", "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as error:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from error


@dataclass(frozen=True)
class TrustConfig:
    ns_reliable_providers: FrozenSet[str] = DEFAULT_NS_RELIABLE_PROVIDERS
    ip_stable_providers: FrozenSet[str] = DEFAULT_IP_STABLE_PROVIDERS
    rule_table: RuleTable = field(default_factory=lambda: DEFAULT_RULE_TABLE)
    fast_flux_threshold: int = DEFAULT_FAST_FLUX_THRESHOLD
    dns_lifetime: float = DEFAULT_DNS_LIFETIME
    check_timeout: float = DEFAULT_CHECK_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    nameservers: Tuple[str, ...] = ()

    def __post_init__(self):
        for name in ("ns_reliable_providers", "ip_stable_providers", "nameservers"):
            if isinstance(getattr(self, name), str):
                raise TypeError(f"{name} must be a collection of strings, not a single string")
        object.__setattr__(self, "rule_table", MappingProxyType(dict(self.rule_table)))
        # Provider matching is case-insensitive, so store lowercase once.
        object.__setattr__(
            self, "ns_reliable_providers", frozenset(item.lower() for item in self.ns_reliable_providers)
        )
        object.__setattr__(
            self, "ip_stable_providers", frozenset(item.lower() for item in self.ip_stable_providers)
        )
        object.__setattr__(self, "nameservers", tuple(self.nameservers))

    def validate(self) -> "TrustConfig":
        validate_rule_table(self.rule_table)
        if self.fast_flux_threshold < 1:
            raise ValueError("fast_flux_threshold must be at least 1")
        if self.dns_lifetime <= 0 or self.check_timeout <= 0:
            raise ValueError("dns_lifetime and check_timeout must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        return self

    def rule_for(self, check: CheckKind, outcome: OutcomeKind) -> RuleOutcome:
        return self.rule_table[(check, outcome)]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "TrustConfig":
        env = os.environ if environ is None else environ
        values = {
            "dns_lifetime": _env_number(env, "DNS_LIFETIME", DEFAULT_DNS_LIFETIME, float),
            "check_timeout": _env_number(env, "CHECK_TIMEOUT", DEFAULT_CHECK_TIMEOUT, float),
            "max_workers": _env_number(env, "MAX_WORKERS", DEFAULT_MAX_WORKERS, int),
        }
        ns_providers = _split_env_list(env.get(f"{ENV_PREFIX}NS_PROVIDERS", ""))
        if ns_providers:
            values["ns_reliable_providers"] = frozenset(ns_providers)
        ip_providers = _split_env_list(env.get(f"{ENV_PREFIX}IP_PROVIDERS", ""))
        if ip_providers:
            values["ip_stable_providers"] = frozenset(ip_providers)
        nameservers = _split_env_list(env.get(f"{ENV_PREFIX}NAMESERVERS", ""))
        if nameservers:
            values["nameservers"] = nameservers
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values).validate()


DEFAULT_CONFIG = TrustConfig()
