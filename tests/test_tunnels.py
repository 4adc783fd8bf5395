import pytest

from etshell.tunnels import (
    ForwardEndpoint,
    PortForwardRequest,
    TunnelError,
    parse_ranges_to_requests,
)


def test_single_ports():
    requests = parse_ranges_to_requests("10080:80,10443:443")
    assert requests == [
        PortForwardRequest(ForwardEndpoint(port=10080), ForwardEndpoint(port=80)),
        PortForwardRequest(ForwardEndpoint(port=10443), ForwardEndpoint(port=443)),
    ]


def test_port_range():
    requests = parse_ranges_to_requests("10090-10092:8000-8002")
    assert [r.source.port for r in requests] == [10090, 10091, 10092]
    assert [r.destination.port for r in requests] == [8000, 8001, 8002]


def test_range_and_single_combined():
    requests = parse_ranges_to_requests("10080:80,10090-10092:8000-8002")
    assert len(requests) == 4
    assert requests[0].source.port == 10080


def test_range_offsets_are_preserved():
    requests = parse_ranges_to_requests("5000-5009:6000-6009")
    assert all(r.destination.port - r.source.port == 1000 for r in requests)
    assert len(requests) == 10


def test_named_sockets():
    requests = parse_ranges_to_requests("/tmp/local.sock:/tmp/remote.sock")
    assert requests == [
        PortForwardRequest(
            ForwardEndpoint(name="/tmp/local.sock"),
            ForwardEndpoint(name="/tmp/remote.sock"),
        )
    ]
    assert requests[0].source.port is None


def test_range_mismatch_raises():
    with pytest.raises(TunnelError):
        parse_ranges_to_requests("10090-10092:8000-8005")


def test_range_only_on_one_side_raises():
    with pytest.raises(TunnelError):
        parse_ranges_to_requests("10090-10092:8000")


def test_non_numeric_source_with_numeric_destination_raises():
    with pytest.raises(TunnelError):
        parse_ranges_to_requests("abc:80")


def test_missing_colon_raises():
    with pytest.raises(TunnelError):
        parse_ranges_to_requests("8080")


def test_error_is_value_error():
    with pytest.raises(ValueError):
        parse_ranges_to_requests("")


def test_default_environment_variable():
    request = parse_ranges_to_requests("1:2")[0]
    assert request.environment_variable is None
    assert (request.source.port, request.destination.port) == (1, 2)