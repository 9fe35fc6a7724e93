# ----------------- Fakes for Paramiko -----------------
#
# A FakeFactory stands in for SSHClientFactory: every dial returns a
# FakeSSHClient whose transport hands out scripted exec channels.

import threading

import pytest

from fleetboot.node.manager import NodeManager
from fleetboot.ssh.auth import Agent
from fleetboot.ssh.connection import ConnectionManager


class FakeExecChannel:
    def __init__(self, factory, target):
        self.factory = factory
        self.target = target
        self.command = None
        self.env = None
        self.closed = False
        self._rc = 0
        self._out = b""
        self._err = b""
        self._hang = False

    def update_environment(self, env):
        self.env = dict(env)

    def exec_command(self, command):
        self.command = command
        self.factory.record(("exec", self.target, command))
        err = self.factory.exec_errors.get(command)
        if err is not None:
            raise err
        rc, out, stderr = self.factory.lookup(command)
        self._rc, self._out, self._err = rc, out.encode(), stderr.encode()
        self._hang = command in self.factory.hang

    def exit_status_ready(self):
        return not self._hang

    def recv_ready(self):
        return bool(self._out)

    def recv(self, n):
        chunk, self._out = self._out[:n], self._out[n:]
        return chunk

    def recv_stderr_ready(self):
        return bool(self._err)

    def recv_stderr(self, n):
        chunk, self._err = self._err[:n], self._err[n:]
        return chunk

    def recv_exit_status(self):
        return self._rc

    def close(self):
        self.closed = True


class FakeTunnel:
    def __init__(self, dest):
        self.dest = dest
        self.closed = False

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, factory, target):
        self.factory = factory
        self.target = target
        self.active = True
        self.channels = []

    def is_active(self):
        return self.active

    def open_session(self, timeout=None):
        if self.factory.session_error is not None:
            raise self.factory.session_error
        ch = FakeExecChannel(self.factory, self.target)
        self.channels.append(ch)
        return ch

    def open_channel(self, kind, dest_addr, src_addr, timeout=None):
        self.factory.record(("tunnel", self.target, kind, dest_addr))
        if self.factory.tunnel_error is not None:
            raise self.factory.tunnel_error
        return FakeTunnel(dest_addr)


class FakeRemoteFile:
    def __init__(self, sftp, path):
        self.sftp = sftp
        self.path = path
        self.chunks = []
        self.pipelined = False

    def set_pipelined(self, flag=True):
        self.pipelined = flag

    def write(self, data):
        self.chunks.append(data)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.sftp.files[self.path] = b"".join(self.chunks)
        return False


class FakeSFTP:
    def __init__(self, factory):
        self.factory = factory
        self.files = factory.remote_files
        self.closed = False

    def open(self, path, mode="r"):
        self.factory.record(("sftp_open", path, mode))
        return FakeRemoteFile(self, path)

    def close(self):
        self.closed = True


class FakeSSHClient:
    def __init__(self, factory, address, port, username, sock):
        self.factory = factory
        self.address = address
        self.port = port
        self.username = username
        self.sock = sock
        self.transport = FakeTransport(factory, address)
        self.closed = False
        self.sftp_clients = []

    def get_transport(self):
        return None if self.closed else self.transport

    def open_sftp(self):
        if self.factory.sftp_error is not None:
            raise self.factory.sftp_error
        sftp = FakeSFTP(self.factory)
        self.sftp_clients.append(sftp)
        return sftp

    def close(self):
        self.closed = True
        self.transport.active = False


class FakeFactory:
    def __init__(self):
        self.log = []
        self.clients = []
        self.responses = {}         # command -> (rc, stdout, stderr)
        self.hang = set()           # commands that never finish
        self.exec_errors = {}       # command -> exception raised by exec_command
        self.dial_errors = {}       # address -> exception or list of exceptions
        self.session_error = None
        self.tunnel_error = None
        self.sftp_error = None
        self.remote_files = {}
        self._lock = threading.Lock()

    def record(self, entry):
        with self._lock:
            self.log.append(entry)

    def lookup(self, command):
        return self.responses.get(command, (0, "", ""))

    def commands(self, target=None):
        return [e[2] for e in self.log if e[0] == "exec" and (target is None or e[1] == target)]

    def dials(self):
        return [e[1:] for e in self.log if e[0] == "dial"]

    def dial(self, address, port, username, auth, *, timeout, sock=None):
        self.record(("dial", address, port, username, sock is not None))
        err = self.dial_errors.get(address)
        if isinstance(err, list):
            err = err.pop(0) if err else None
        if err is not None:
            raise err
        client = FakeSSHClient(self, address, port, username, sock)
        with self._lock:
            self.clients.append(client)
        return client


class FakeAuth:
    """AuthResolver stand-in; resolve() can be made to fail."""

    def __init__(self, error=None, sock=None):
        self.error = error
        self.sock = sock
        self.calls = 0

    def resolve(self, key_path):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [Agent("/tmp/agent.sock")]

    def agent_socket(self):
        return self.sock


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def auth():
    return FakeAuth()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connections(factory, auth, clock):
    return ConnectionManager(auth, "/keys/id_ed25519", factory=factory, clock=clock, max_age=600.0)


@pytest.fixture
def nm(connections):
    return NodeManager(connections, command_timeout=5.0, forward_agent=False, poll_interval=0)
