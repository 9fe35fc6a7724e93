import socket
import threading

import paramiko
import pytest

from fleetboot.errors import (
    AuthenticationFailedError,
    ConnectionFailedError,
    OperationTimeoutError,
)
from fleetboot.ssh.connection import SSHClientFactory, _TrustOnFirstUsePolicy


def test_direct_client_is_cached(connections, factory):
    a = connections.get_client("", "10.0.0.1", "root")
    b = connections.get_client("", "10.0.0.1", "root")

    assert a is b
    assert factory.dials() == [("10.0.0.1", 22, "root", False)]
    assert connections.cached_keys() == [("", "10.0.0.1", "root")]


def test_cache_key_includes_user_and_bastion(connections, factory):
    connections.get_client("", "10.0.0.1", "root")
    connections.get_client("", "10.0.0.1", "ubuntu")
    connections.get_client("203.0.113.9", "10.0.0.1", "root")

    assert set(connections.cached_keys()) == {
        ("", "10.0.0.1", "root"),
        ("", "10.0.0.1", "ubuntu"),
        ("", "203.0.113.9", "ubuntu"),
        ("203.0.113.9", "10.0.0.1", "root"),
    }


def test_auth_resolution_failure_never_dials(connections, factory, auth):
    auth.error = AuthenticationFailedError("no valid authentication methods")

    with pytest.raises(AuthenticationFailedError):
        connections.get_client("", "10.0.0.1", "root")
    with pytest.raises(AuthenticationFailedError):
        connections.get_client("203.0.113.9", "10.0.0.1", "root")
    assert factory.dials() == []


def test_server_rejection_is_authentication_failure(connections, factory):
    factory.dial_errors["10.0.0.1"] = paramiko.AuthenticationException("denied")

    with pytest.raises(AuthenticationFailedError) as exc:
        connections.get_client("", "10.0.0.1", "root")
    assert exc.value.retryable is False
    assert connections.cached_keys() == []


def test_failed_dial_is_not_cached(connections, factory):
    factory.dial_errors["10.0.0.1"] = [OSError("connection refused")]

    with pytest.raises(ConnectionFailedError) as exc:
        connections.get_client("", "10.0.0.1", "root")
    assert exc.value.retryable is True
    assert isinstance(exc.value.__cause__, OSError)

    client = connections.get_client("", "10.0.0.1", "root")
    assert client is factory.clients[-1]
    assert len(factory.dials()) == 2


def test_dial_timeout(connections, factory):
    factory.dial_errors["10.0.0.1"] = socket.timeout("timed out")

    with pytest.raises(OperationTimeoutError):
        connections.get_client("", "10.0.0.1", "root")


def test_bastion_hop(connections, factory):
    client = connections.get_client("203.0.113.9", "10.0.0.5", "root")

    assert factory.dials() == [
        ("203.0.113.9", 22, "ubuntu", False),
        ("10.0.0.5", 22, "root", True),
    ]
    assert ("tunnel", "203.0.113.9", "direct-tcpip", ("10.0.0.5", 22)) in factory.log
    assert client.sock.dest == ("10.0.0.5", 22)

    # the jumpbox connection is reused for the next node
    connections.get_client("203.0.113.9", "10.0.0.6", "root")
    assert [d[0] for d in factory.dials()].count("203.0.113.9") == 1


def test_bastion_failure_is_wrapped(connections, factory):
    factory.dial_errors["203.0.113.9"] = OSError("no route to host")

    with pytest.raises(ConnectionFailedError, match="failed to connect to jumpbox 203.0.113.9"):
        connections.get_client("203.0.113.9", "10.0.0.5", "root")
    assert all(d[0] != "10.0.0.5" for d in factory.dials())


def test_bastion_auth_rejection_stays_terminal(connections, factory):
    factory.dial_errors["203.0.113.9"] = paramiko.AuthenticationException("denied")

    with pytest.raises(AuthenticationFailedError, match="jumpbox"):
        connections.get_client("203.0.113.9", "10.0.0.5", "root")


def test_second_hop_failure_mentions_target(connections, factory):
    factory.dial_errors["10.0.0.5"] = paramiko.SSHException("bad banner")

    with pytest.raises(ConnectionFailedError) as exc:
        connections.get_client("203.0.113.9", "10.0.0.5", "root")
    assert "10.0.0.5" in str(exc.value)
    assert "through jumpbox 203.0.113.9" in str(exc.value)


def test_tunnel_failure_invalidates_jumpbox(connections, factory):
    factory.tunnel_error = paramiko.ChannelException(2, "connect failed")

    with pytest.raises(ConnectionFailedError, match="through jumpbox"):
        connections.get_client("203.0.113.9", "10.0.0.5", "root")
    assert connections.cached_keys() == []
    assert factory.clients[0].closed


def test_entries_expire_after_max_age(connections, factory, clock):
    first = connections.get_client("", "10.0.0.1", "root")
    clock.now += 601

    second = connections.get_client("", "10.0.0.1", "root")

    assert second is not first
    assert first.closed


def test_dead_transport_is_evicted(connections, factory):
    first = connections.get_client("", "10.0.0.1", "root")
    first.transport.active = False

    assert connections.get_client("", "10.0.0.1", "root") is not first


def test_invalidate_and_close_all(connections, factory):
    a = connections.get_client("", "10.0.0.1", "root")
    b = connections.get_client("", "10.0.0.2", "root")

    connections.invalidate("", "10.0.0.1", "root")
    assert a.closed and not b.closed

    connections.close_all()
    assert b.closed
    assert connections.cached_keys() == []


def test_concurrent_callers_share_one_client(connections, factory):
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(connections.get_client("", "10.0.0.1", "root"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(c) for c in results}) == 1
    losers = [c for c in factory.clients if c is not results[0]]
    assert all(c.closed for c in losers)


# ----------------- host keys -----------------

class _HostKeyClient:
    def __init__(self):
        self.keys = paramiko.HostKeys()

    def get_host_keys(self):
        return self.keys


def test_known_hosts_created_and_new_hosts_recorded(tmp_path):
    known = tmp_path / "ssh" / "known_hosts"
    f = SSHClientFactory(known_hosts=known)
    f.new_client().close()
    assert known.exists()

    key = paramiko.RSAKey.generate(bits=1024)
    policy = _TrustOnFirstUsePolicy(known, threading.Lock())
    client = _HostKeyClient()
    policy.missing_host_key(client, "10.0.0.1", key)

    assert client.keys.lookup("10.0.0.1") is not None
    assert known.read_text().strip() == f"10.0.0.1 ssh-rsa {key.get_base64()}"


def test_bastion_with_own_user_and_port(connections, factory):
    connections.get_client("203.0.113.9", "10.0.0.5", "root", bastion_user="admin", bastion_port=2222)
    connections.get_client("203.0.113.9", "10.0.0.5", "root")

    assert factory.dials() == [
        ("203.0.113.9", 2222, "admin", False),
        ("10.0.0.5", 22, "root", True),
        ("203.0.113.9", 22, "ubuntu", False),
        ("10.0.0.5", 22, "root", True),
    ]
    assert set(connections.cached_keys()) == {
        ("", "203.0.113.9", "admin"),
        ("admin@203.0.113.9:2222", "10.0.0.5", "root"),
        ("", "203.0.113.9", "ubuntu"),
        ("203.0.113.9", "10.0.0.5", "root"),
    }

    connections.invalidate("203.0.113.9", "10.0.0.5", "root", bastion_user="admin", bastion_port=2222)
    assert ("admin@203.0.113.9:2222", "10.0.0.5", "root") not in connections.cached_keys()
