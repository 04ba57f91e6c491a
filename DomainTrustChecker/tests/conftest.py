import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Tuple

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from DnsResolver import FailureClass, LookupFailure, RecordKind  # noqa: E402


class FakeResolver:
    """In-memory resolver keyed by (kind, name) and by address for PTR.

    Values are either a list of records or a FailureClass to raise. Anything
    not configured answers with ``default``.
    """

    def __init__(self, answers=None, reverse=None, default=FailureClass.NO_DATA, delays=None, reverse_delays=None):
        self.answers: Dict[Tuple[RecordKind, str], object] = dict(answers or {})
        self.reverse_answers: Dict[str, object] = dict(reverse or {})
        self.default = default
        self.delays: Dict[Tuple[RecordKind, str], float] = dict(delays or {})
        self.reverse_delays: Dict[str, float] = dict(reverse_delays or {})
        self.calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def _answer(self, value, label):
        if isinstance(value, FailureClass):
            raise LookupFailure(value, f"{label}: {value.value}")
        if isinstance(value, Exception):
            raise value
        return list(value)

    def resolve(self, kind, name):
        with self._lock:
            self.calls.append((kind.value, name))
        delay = self.delays.get((kind, name))
        if delay:
            time.sleep(delay)
        return self._answer(self.answers.get((kind, name), self.default), f"{kind.value} {name}")

    def reverse(self, address):
        with self._lock:
            self.calls.append(("PTR", address))
        delay = self.reverse_delays.get(address)
        if delay:
            time.sleep(delay)
        return self._answer(self.reverse_answers.get(address, self.default), f"PTR {address}")

    def count(self, kind: str) -> int:
        return sum(1 for call_kind, _name in self.calls if call_kind == kind)


@pytest.fixture
def fake_resolver():
    return FakeResolver


@pytest.fixture
def healthy_answers():
    return {
        (RecordKind.TXT, "example.com"): ["v=spf1 include:_spf.example.com -all"],
        (RecordKind.TXT, "_dmarc.example.com"): ["v=DMARC1; p=reject"],
        (RecordKind.NS, "example.com"): ["ns1.cloudflare.com", "ns2.cloudflare.com"],
        (RecordKind.CNAME, "www.example.com"): ["example.com.cdn.cloudflare.net"],
        (RecordKind.A, "example.com"): ["192.0.2.10"],
        (RecordKind.MX, "example.com"): ["10 mail.example.com"],
    }
