import ipaddress
import logging
import math
import re
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple, TypeVar

from DnsResolver import FailureClass, LookupFailure, LookupOutcome, RecordKind, ResolverCapability
from TrustPolicy import (
    CHECK_ORDER,
    DEFAULT_CONFIG,
    CheckKind,
    OutcomeKind,
    Severity,
    TrustConfig,
    severity_for,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

LABEL_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
MAX_DOMAIN_LENGTH = 253


class InvalidDomainError(ValueError):
    pass


@dataclass(frozen=True)
class Finding:
    check: CheckKind
    outcome: OutcomeKind
    severity: Severity
    score_delta: int
    message: str
    raw_evidence: Tuple[str, ...] = ()

    @property
    def emoji(self) -> str:
        return self.severity.emoji

    def to_dict(self) -> Dict:
        return {
            "check": self.check.value,
            "outcome": self.outcome.value,
            "severity": self.severity.value,
            "score_delta": self.score_delta,
            "message": self.message,
            "raw_evidence": list(self.raw_evidence),
        }


@dataclass(frozen=True)
class TrustReport:
    domain: str
    total_score: int
    findings: Tuple[Finding, ...]

    def __post_init__(self):
        object.__setattr__(self, "findings", tuple(self.findings))
        checks = tuple(finding.check for finding in self.findings)
        if checks != CHECK_ORDER:
            raise ValueError(f"Report must hold one finding per check in order, got {[c.value for c in checks]}")
        expected = sum(finding.score_delta for finding in self.findings)
        if self.total_score != expected:
            raise ValueError(f"total_score {self.total_score} does not match finding deltas ({expected})")

    @classmethod
    def from_findings(cls, domain: str, findings: Sequence[Finding]) -> "TrustReport":
        return cls(domain=domain, total_score=sum(item.score_delta for item in findings), findings=tuple(findings))

    def finding(self, check: CheckKind) -> Finding:
        return self.findings[CHECK_ORDER.index(check)]

    def to_dict(self) -> Dict:
        return {
            "domain": self.domain,
            "total_score": self.total_score,
            "findings": [finding.to_dict() for finding in self.findings],
        }


def normalize_domain(value: str) -> str:
    if not isinstance(value, str):
        raise InvalidDomainError("Domain must be a string")
    candidate = value.strip().lower()
    if candidate.endswith("."):
        candidate = candidate[:-1]
    if not candidate:
        raise InvalidDomainError("Domain is empty")
    try:
        ipaddress.ip_address(candidate.strip("[]"))
    except ValueError:
        pass
    else:
        raise InvalidDomainError(f"'{value.strip()}' is an IP address, not a domain name")
    try:
        candidate = candidate.encode("idna").decode("ascii")
    except UnicodeError as error:
        raise InvalidDomainError(f"'{value.strip()}' is not a valid domain name: {error}") from error
    if len(candidate) > MAX_DOMAIN_LENGTH:
        raise InvalidDomainError(f"Domain is longer than {MAX_DOMAIN_LENGTH} characters")
    for label in candidate.split("."):
        if not LABEL_PATTERN.match(label):
            raise InvalidDomainError(f"'{value.strip()}' is not a valid domain name (bad label '{label}')")
    return candidate


def _joined(record) -> str:
    if isinstance(record, str):
        return record
    return "".join(
        item.decode("utf-8", errors="replace") if isinstance(item, bytes) else str(item) for item in record
    )


def _contains_any(names: Sequence[str], providers) -> bool:
    return any(provider in name.lower() for name in names for provider in providers)


def distinct_addresses(records: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(records))


def needs_reverse_lookup(lookup: LookupOutcome, config: TrustConfig = DEFAULT_CONFIG) -> bool:
    if not lookup.ok:
        return False
    count = len(distinct_addresses(lookup.records))
    return 0 < count < config.fast_flux_threshold


def classify(
    check: CheckKind,
    lookup: LookupOutcome,
    config: TrustConfig = DEFAULT_CONFIG,
    ptr_names: Sequence[str] = (),
) -> OutcomeKind:
    failure = lookup.failure

    if check in (CheckKind.SPF, CheckKind.DMARC):
        if failure == FailureClass.TRANSIENT:
            return OutcomeKind.LOOKUP_ERROR
        prefix = "v=spf1" if check == CheckKind.SPF else "v=DMARC1"
        if lookup.ok and any(_joined(record).startswith(prefix) for record in lookup.records):
            return OutcomeKind.PRESENT
        return OutcomeKind.ABSENT

    if check == CheckKind.NS:
        if not lookup.ok:
            return OutcomeKind.LOOKUP_ERROR
        if _contains_any(lookup.records, config.ns_reliable_providers):
            return OutcomeKind.RELIABLE
        return OutcomeKind.UNRELIABLE

    if check == CheckKind.CNAME:
        if failure == FailureClass.NOT_FOUND:
            return OutcomeKind.TARGET_UNREACHABLE
        if failure == FailureClass.NO_DATA:
            return OutcomeKind.NO_RECORD
        if failure is not None:
            return OutcomeKind.LOOKUP_ERROR
        return OutcomeKind.RESOLVES_NORMALLY if lookup.records else OutcomeKind.NO_RECORD

    if check == CheckKind.A:
        if failure == FailureClass.TRANSIENT:
            return OutcomeKind.LOOKUP_ERROR
        addresses = distinct_addresses(lookup.records) if lookup.ok else []
        if not addresses:
            return OutcomeKind.NO_ADDRESSES
        if len(addresses) >= config.fast_flux_threshold:
            return OutcomeKind.MANY_ADDRESSES
        if _contains_any(ptr_names, config.ip_stable_providers):
            return OutcomeKind.STABLE_PROVIDER
        return OutcomeKind.UNKNOWN_PROVIDER

    if check == CheckKind.MX:
        if failure == FailureClass.TRANSIENT:
            return OutcomeKind.LOOKUP_ERROR
        return OutcomeKind.PRESENT if lookup.ok and lookup.records else OutcomeKind.ABSENT

    raise ValueError(f"Unknown check: {check}")


def gather_with_partial_tolerance(
    fn: Callable[[T], R],
    items: Sequence[T],
    max_workers: int = 4,
    timeout: float | None = None,
) -> List[Tuple[T, R | None]]:
    """Run ``fn`` over ``items`` concurrently, keeping whatever succeeds.

    ``timeout`` bounds a single call. Calls queued behind a full pool get their
    own share of the wait, and a slow or failing call never cancels its siblings.
    """
    if not items:
        return []
    workers = max(1, min(max_workers, len(items)))
    budget = None if timeout is None else timeout * math.ceil(len(items) / workers)
    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [executor.submit(fn, item) for item in items]
        wait(futures, timeout=budget)
        results: List[Tuple[T, R | None]] = []
        for item, future in zip(items, futures):
            if not future.done():
                logger.debug("Lookup for %s did not finish within %ss", item, budget)
                results.append((item, None))
                continue
            try:
                results.append((item, future.result()))
            except Exception as error:
                logger.debug("Lookup for %s failed: %s", item, error)
                results.append((item, None))
        return results
    finally:
        executor.shutdown(wait=False)


def attempt_lookup(call: Callable[[], List[str]], description: str) -> LookupOutcome:
    try:
        return LookupOutcome.success(call() or ())
    except LookupFailure as failure:
        return LookupOutcome.failed(failure.failure, failure.message)
    except Exception as error:
        logger.warning("Resolver raised an unexpected error for %s: %r", description, error)
        return LookupOutcome.failed(FailureClass.TRANSIENT, str(error) or type(error).__name__)


def build_finding(
    domain: str,
    check: CheckKind,
    outcome: OutcomeKind,
    config: TrustConfig,
    evidence: Sequence[str] = (),
    summary: str = "",
) -> Finding:
    rule = config.rule_for(check, outcome)
    return Finding(
        check=check,
        outcome=outcome,
        severity=severity_for(outcome, rule.score_delta),
        score_delta=rule.score_delta,
        message=rule.render(domain, summary or ", ".join(evidence)),
        raw_evidence=tuple(evidence),
    )


CHECK_QUERIES: Dict[CheckKind, Tuple[RecordKind, str]] = {
    CheckKind.SPF: (RecordKind.TXT, "{domain}"),
    CheckKind.DMARC: (RecordKind.TXT, "_dmarc.{domain}"),
    CheckKind.NS: (RecordKind.NS, "{domain}"),
    CheckKind.CNAME: (RecordKind.CNAME, "www.{domain}"),
    CheckKind.A: (RecordKind.A, "{domain}"),
    CheckKind.MX: (RecordKind.MX, "{domain}"),
}


def _reverse_hostnames(resolver: ResolverCapability, addresses: Sequence[str], config: TrustConfig) -> List[str]:
    gathered = gather_with_partial_tolerance(
        resolver.reverse,
        addresses,
        max_workers=config.max_workers,
        timeout=config.dns_lifetime,
    )
    hostnames: List[str] = []
    for _address, names in gathered:
        hostnames.extend(names or [])
    return hostnames


def run_check(check: CheckKind, domain: str, resolver: ResolverCapability, config: TrustConfig) -> Finding:
    kind, template = CHECK_QUERIES[check]
    name = template.format(domain=domain)
    lookup = attempt_lookup(lambda: resolver.resolve(kind, name), f"{kind.value} {name}")

    if not lookup.ok:
        logger.debug("%s check on %s: %s (%s)", check.value, name, lookup.failure.value, lookup.error)
        outcome = classify(check, lookup, config)
        evidence = (lookup.error,) if outcome == OutcomeKind.LOOKUP_ERROR else ()
        return build_finding(domain, check, outcome, config, evidence)

    ptr_names: List[str] = []
    if check == CheckKind.A and needs_reverse_lookup(lookup, config):
        ptr_names = _reverse_hostnames(resolver, distinct_addresses(lookup.records), config)

    outcome = classify(check, lookup, config, ptr_names)
    records = [_joined(record) for record in lookup.records]
    if check == CheckKind.A:
        if outcome == OutcomeKind.MANY_ADDRESSES:
            addresses = distinct_addresses(records)
            return build_finding(domain, check, outcome, config, addresses, f"{len(addresses)} addresses found")
        if outcome in (OutcomeKind.STABLE_PROVIDER, OutcomeKind.UNKNOWN_PROVIDER):
            return build_finding(domain, check, outcome, config, ptr_names)
    return build_finding(domain, check, outcome, config, records)


def _failed_finding(domain: str, check: CheckKind, config: TrustConfig, reason: str) -> Finding:
    try:
        return build_finding(domain, check, OutcomeKind.LOOKUP_ERROR, config, (reason,))
    except (KeyError, IndexError, ValueError, AttributeError):
        logger.exception("Could not render the %s lookup-error rule", check.value)
        return Finding(
            check=check,
            outcome=OutcomeKind.LOOKUP_ERROR,
            severity=Severity.WARN,
            score_delta=0,
            message=f"{check.value} lookup failed: {reason}",
            raw_evidence=(reason,),
        )


def evaluate(domain: str, resolver: ResolverCapability, config: TrustConfig | None = None) -> TrustReport:
    """Run the six DNS checks against ``domain`` and return the scored report.

    Raises InvalidDomainError before any lookup when the domain is unusable.
    Per-check failures never propagate; they become zero-delta findings.
    """
    config = (config or DEFAULT_CONFIG).validate()
    domain = normalize_domain(domain)
    logger.debug("Evaluating %s", domain)

    executor = ThreadPoolExecutor(max_workers=min(config.max_workers, len(CHECK_ORDER)))
    deadline = time.monotonic() + config.check_timeout
    findings: List[Finding] = []
    try:
        futures: Dict[CheckKind, Future] = {
            check: executor.submit(run_check, check, domain, resolver, config) for check in CHECK_ORDER
        }
        for check in CHECK_ORDER:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                findings.append(futures[check].result(timeout=remaining))
            except FutureTimeoutError:
                logger.debug("%s check on %s timed out", check.value, domain)
                findings.append(
                    _failed_finding(domain, check, config, f"timed out after {config.check_timeout:g}s")
                )
            except Exception as error:
                logger.exception("%s check on %s failed", check.value, domain)
                findings.append(_failed_finding(domain, check, config, str(error) or type(error).__name__))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    report = TrustReport.from_findings(domain, findings)
    logger.debug("Evaluated %s: total score %s", domain, report.total_score)
    return report
