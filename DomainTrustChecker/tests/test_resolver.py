from unittest.mock import MagicMock

import dns.exception
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.resolver
import pytest

from DnsResolver import DnsPythonResolver, FailureClass, LookupFailure, LookupOutcome, RecordKind


def _rdata(rdtype: str, text: str):
    return dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.from_text(rdtype), text)


def _resolver_returning(*answers):
    backend = MagicMock(spec=dns.resolver.Resolver)
    backend.resolve.return_value = list(answers)
    return DnsPythonResolver(resolver=backend, lifetime=2.5), backend


def _resolver_raising(error):
    backend = MagicMock(spec=dns.resolver.Resolver)
    backend.resolve.side_effect = error
    backend.resolve_address.side_effect = error
    return DnsPythonResolver(resolver=backend), backend


def test_txt_segments_are_concatenated():
    resolver, backend = _resolver_returning(_rdata("TXT", '"v=spf1 include:_spf.example.com" " -all"'))

    records = resolver.resolve(RecordKind.TXT, "example.com")

    assert records == ["v=spf1 include:_spf.example.com -all"]
    backend.resolve.assert_called_once_with("example.com", "TXT", lifetime=2.5)


def test_names_drop_trailing_dot_and_mx_keeps_preference():
    resolver, _backend = _resolver_returning(_rdata("NS", "ns1.cloudflare.com."))
    assert resolver.resolve(RecordKind.NS, "example.com") == ["ns1.cloudflare.com"]

    resolver, _backend = _resolver_returning(_rdata("MX", "10 mail.example.com."))
    assert resolver.resolve(RecordKind.MX, "example.com") == ["10 mail.example.com"]

    resolver, _backend = _resolver_returning(_rdata("A", "192.0.2.7"))
    assert resolver.resolve(RecordKind.A, "example.com") == ["192.0.2.7"]


@pytest.mark.parametrize(
    "error, expected",
    [
        (dns.resolver.NXDOMAIN(), FailureClass.NOT_FOUND),
        (dns.resolver.NoAnswer(), FailureClass.NO_DATA),
        (dns.exception.Timeout(), FailureClass.TRANSIENT),
        (dns.resolver.NoNameservers(), FailureClass.TRANSIENT),
        (dns.resolver.YXDOMAIN(), FailureClass.TRANSIENT),
    ],
)
def test_dnspython_errors_map_to_failure_classes(error, expected):
    resolver, _backend = _resolver_raising(error)

    with pytest.raises(LookupFailure) as excinfo:
        resolver.resolve(RecordKind.CNAME, "www.example.com")

    assert excinfo.value.failure == expected
    assert excinfo.value.message


def test_reverse_returns_ptr_names():
    backend = MagicMock(spec=dns.resolver.Resolver)
    backend.resolve_address.return_value = [_rdata("PTR", "ec2-1-2-3-4.compute-1.amazonaws.com.")]
    resolver = DnsPythonResolver(resolver=backend)

    assert resolver.reverse("1.2.3.4") == ["ec2-1-2-3-4.compute-1.amazonaws.com"]
    backend.resolve_address.assert_called_once_with("1.2.3.4", lifetime=4.0)


def test_reverse_failure_is_classified():
    resolver, _backend = _resolver_raising(dns.resolver.NXDOMAIN())

    with pytest.raises(LookupFailure) as excinfo:
        resolver.reverse("203.0.113.9")

    assert excinfo.value.failure == FailureClass.NOT_FOUND


def test_lookup_outcome_constructors():
    ok = LookupOutcome.success(["a", "b"])
    failed = LookupOutcome.failed(FailureClass.TRANSIENT)

    assert ok.ok and ok.records == ("a", "b")
    assert not failed.ok
    assert failed.error == "transient"
