import paramiko

from fleetboot.config.models import ClusterTopology
from fleetboot.installer.fleet import FleetPreparer, nodes_for
from fleetboot.k0s.k0sctl_config import plan_hosts
from fleetboot.node.remote import INOTIFY_WATCHES_LINE, MAX_MAP_COUNT_LINE, REMOTE_K0S_BINARY
from fleetboot.observers.dispatcher import EventBus
from fleetboot.observers.events import HostPrepared, HostPrepareFailed, HostPrepareStarted, PrepareSummary


class Recorder:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


def topology(**extra):
    data = {
        "datacenter": {"name": "fra1"},
        "controlPlanes": [{"ipAddress": "10.0.0.10"}],
        "workers": [{"ipAddress": "10.0.0.20"}, {"ipAddress": "10.0.0.21"}],
    }
    data.update(extra)
    return ClusterTopology.model_validate(data)


def preparer(nm, recorder, **kw):
    kw.setdefault("ssh_timeout", 0)
    return FleetPreparer(nm, bus=EventBus([recorder]), datacenter="fra1", run_id="run-1", **kw)


def test_nodes_for_bastion_host():
    host = plan_hosts(topology(bastion={"address": "203.0.113.9"}))[1]
    node, jumpbox = nodes_for(host)

    assert (node.name, node.internal_ip, node.user) == ("worker-1", "10.0.0.20", "root")
    assert jumpbox.external_ip == "203.0.113.9"


def test_prepare_configures_missing_sysctl_lines(nm, factory):
    factory.responses[f"grep -qxF '{INOTIFY_WATCHES_LINE}' /etc/sysctl.conf"] = (1, "", "")
    rec = Recorder()

    report = preparer(nm, rec).prepare(plan_hosts(topology()))

    assert report.succeeded
    assert [r.label for r in report.results] == ["controller-1", "worker-1", "worker-2"]
    for ip in ("10.0.0.10", "10.0.0.20", "10.0.0.21"):
        cmds = factory.commands(ip)
        assert f"grep -qxF '{INOTIFY_WATCHES_LINE}' /etc/sysctl.conf || echo '{INOTIFY_WATCHES_LINE}' >> /etc/sysctl.conf" in cmds
        # already present, left alone
        assert not any(c.startswith("grep -qxF 'vm.max_map_count") and "echo" in c for c in cmds)
        assert f"grep -qxF '{MAX_MAP_COUNT_LINE}' /etc/sysctl.conf" in cmds

    assert len(rec.of(HostPrepareStarted)) == 3
    assert len(rec.of(HostPrepared)) == 3
    summary = rec.of(PrepareSummary)[0]
    assert (summary.ok, summary.failed, summary.run_id, summary.env) == (3, 0, "run-1", "fra1")


def test_one_unreachable_host_does_not_stop_the_rest(nm, factory):
    factory.dial_errors["10.0.0.20"] = OSError("no route to host")
    rec = Recorder()

    report = preparer(nm, rec).prepare(plan_hosts(topology()))

    assert not report.succeeded
    assert [r.label for r in report.failed] == ["worker-1"]
    assert "timeout waiting for SSH" in report.failed[0].error
    assert len(report.ok) == 2
    assert rec.of(HostPrepareFailed)[0].host == "worker-1"
    assert rec.of(PrepareSummary)[0].failed_hosts == ["worker-1"]


def test_auth_failure_is_reported_not_retried(nm, factory):
    factory.dial_errors["10.0.0.10"] = paramiko.AuthenticationException("denied")
    rec = Recorder()

    report = preparer(nm, rec, ssh_timeout=60, ssh_interval=30).prepare(plan_hosts(topology()))

    assert [r.label for r in report.failed] == ["controller-1"]
    assert [d[0] for d in factory.dials()].count("10.0.0.10") == 1


def test_missing_commands_are_advisory(nm, factory):
    factory.responses["command -v 'systemctl' >/dev/null 2>&1"] = (1, "", "")

    report = preparer(nm, Recorder()).prepare(plan_hosts(topology()))

    assert report.succeeded
    assert all(r.missing_commands == ("systemctl",) for r in report.results)


def test_binary_upload(nm, factory, tmp_path):
    binary = tmp_path / "k0s"
    binary.write_bytes(b"k0s")

    report = preparer(nm, Recorder(), upload_binary=True).prepare(plan_hosts(topology(), binary_path=str(binary)))

    assert report.succeeded
    assert factory.remote_files[REMOTE_K0S_BINARY] == b"k0s"
    assert f"chmod 0755 '{REMOTE_K0S_BINARY}'" in factory.commands("10.0.0.21")


def test_empty_plan():
    report = FleetPreparer(nm=None).prepare([])
    assert report.results == [] and report.succeeded


def test_failing_observer_does_not_break_preparation(nm, factory):
    class Broken:
        def notify(self, event):
            raise RuntimeError("observer bug")

    rec = Recorder()
    report = FleetPreparer(nm, bus=EventBus([Broken(), rec]), ssh_timeout=0).prepare(plan_hosts(topology()))

    assert report.succeeded
    assert len(rec.of(PrepareSummary)) == 1


def test_bastion_user_and_port_are_honoured(nm, factory):
    topo = topology(bastion={"address": "203.0.113.9", "user": "admin", "port": 2222})

    report = preparer(nm, Recorder()).prepare(plan_hosts(topo))

    assert report.succeeded
    jumpbox_dials = {d for d in factory.dials() if d[0] == "203.0.113.9"}
    assert jumpbox_dials == {("203.0.113.9", 2222, "admin", False)}
    targets = {d[0] for d in factory.dials() if d[3]}
    assert targets == {"10.0.0.10", "10.0.0.20", "10.0.0.21"}
    assert ("admin@203.0.113.9:2222", "10.0.0.20", "root") in nm.connections.cached_keys()
