import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol, Sequence, Tuple

import dns.exception
import dns.resolver

from TrustPolicy import DEFAULT_DNS_LIFETIME

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    TXT = "TXT"
    NS = "NS"
    CNAME = "CNAME"
    A = "A"
    MX = "MX"


class FailureClass(str, Enum):
    NOT_FOUND = "not_found"
    NO_DATA = "no_data"
    TRANSIENT = "transient"


class LookupFailure(Exception):
    def __init__(self, failure: FailureClass, message: str = ""):
        super().__init__(message or failure.value)
        self.failure = failure
        self.message = message or failure.value


@dataclass(frozen=True)
class LookupOutcome:
    """Raw result of one resolver call, as handed to classification.

    Exactly one of ``records`` (possibly empty) or ``failure`` is meaningful:
    a successful lookup has ``failure is None``.
    """

    records: Tuple[str, ...] = ()
    failure: FailureClass | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, records: Sequence[str]) -> "LookupOutcome":
        return cls(records=tuple(records))

    @classmethod
    def failed(cls, failure: FailureClass, error: str = "") -> "LookupOutcome":
        return cls(failure=failure, error=error or failure.value)


class ResolverCapability(Protocol):
    def resolve(self, kind: RecordKind, name: str) -> List[str]:
        ...

    def reverse(self, address: str) -> List[str]:
        ...


def classify_dns_exception(error: dns.exception.DNSException) -> FailureClass:
    if isinstance(error, dns.resolver.NXDOMAIN):
        return FailureClass.NOT_FOUND
    if isinstance(error, dns.resolver.NoAnswer):
        return FailureClass.NO_DATA
    return FailureClass.TRANSIENT


def _render_answer(kind: RecordKind, answer) -> str:
    if kind == RecordKind.TXT:
        return "".join(
            item.decode("utf-8", errors="replace") if isinstance(item, bytes) else str(item)
            for item in answer.strings
        )
    if kind == RecordKind.MX:
        return f"{answer.preference} {str(answer.exchange).rstrip('.')}"
    return str(answer).rstrip(".")


class DnsPythonResolver:
    def __init__(
        self,
        nameservers: Sequence[str] | None = None,
        lifetime: float = DEFAULT_DNS_LIFETIME,
        resolver: dns.resolver.Resolver | None = None,
    ):
        if resolver is None:
            resolver = dns.resolver.Resolver()
            if nameservers:
                resolver.nameservers = list(nameservers)
        self.resolver = resolver
        self.lifetime = lifetime

    def resolve(self, kind: RecordKind, name: str) -> List[str]:
        try:
            answers = self.resolver.resolve(name, kind.value, lifetime=self.lifetime)
        except dns.exception.DNSException as error:
            failure = classify_dns_exception(error)
            logger.debug("%s lookup for %s failed (%s): %s", kind.value, name, failure.value, error)
            raise LookupFailure(failure, str(error) or type(error).__name__) from error
        return [_render_answer(kind, answer) for answer in answers]

    def reverse(self, address: str) -> List[str]:
        try:
            answers = self.resolver.resolve_address(address, lifetime=self.lifetime)
        except dns.exception.DNSException as error:
            failure = classify_dns_exception(error)
            logger.debug("PTR lookup for %s failed (%s): %s", address, failure.value, error)
            raise LookupFailure(failure, str(error) or type(error).__name__) from error
        return [str(answer).rstrip(".") for answer in answers]
