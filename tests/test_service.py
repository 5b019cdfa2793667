import socket
import threading

import pytest

from gridloss.config import Configuration
from gridloss.errors import BusError, CacheError, DiagnosticsError
from gridloss.service import GridLossService, build_parser, main

CONFIG_YAML = """\
config_api:
  url: [http://127.0.0.1:1]
  username: alice
  password: secret
rtdb:
  input_bus: tcp://127.0.0.1:5557
  output_bus: tcp://127.0.0.1:5556
grid_losses:
  log: info
  queue: 8
  losses:
    - equipment: 8
      current_a: 81
      state: 42
"""


@pytest.fixture
def workdir(tmp_path, monkeypatch, topology_bytes, equipment_bytes):
    """Working directory laid out like a deployment: config plus a warm cache."""
    (tmp_path / "cache").mkdir()
    (tmp_path / "cache" / "flisr-topology.json").write_bytes(topology_bytes)
    (tmp_path / "cache" / "flisr-equipment.json").write_bytes(equipment_bytes)
    (tmp_path / "grid_losses.yml").write_text(CONFIG_YAML, encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def run_in_thread(target, *args):
    result = []
    thread = threading.Thread(target=lambda: result.append(target(*args)), daemon=True)
    thread.start()
    return thread, result


def test_happy_cache_boot(workdir, fake_bus):
    config = Configuration.load_from_file("grid_losses.yml")
    service = GridLossService(config, use_cache_only=True, bus_factory=lambda *a: fake_bus)

    service.start()
    thread, result = run_in_thread(service.run)

    assert fake_bus.loop_entered.wait(1.0)
    assert len(service.loader.equipment_by_id) == 2
    assert service.topology_grid.number_of_nodes() == 3
    assert service.topology_grid.number_of_edges() == 2
    assert service.topology_flisr is not None
    assert service.topology_flisr is not service.topology_grid
    assert fake_bus.subscribers == ["tcp://127.0.0.1:5556"]
    assert fake_bus.publishers == ["tcp://127.0.0.1:5557"]

    service.stop()
    thread.join(timeout=2.0)
    service.shutdown(timeout=1.0)
    assert result == [None]
    assert fake_bus.closed


def test_toggle_leaves_flisr_graph_untouched(workdir, fake_bus):
    config = Configuration.load_from_file("grid_losses.yml")
    service = GridLossService(config, use_cache_only=True, bus_factory=lambda *a: fake_bus)
    service.start()

    fake_bus.deliver(b'[{"id": 42, "value": 0}]')
    service.dispatcher.input_data_queue.join()
    service.shutdown(timeout=1.0)

    assert service.topology_grid.switch_state(7) == 0
    assert service.topology_flisr.switch_state(7) == 1


def test_flisr_graph_can_be_disabled(workdir, fake_bus):
    config = Configuration.load_from_file("grid_losses.yml")
    config.grid_losses.flisr_graph = False
    service = GridLossService(config, use_cache_only=True, bus_factory=lambda *a: fake_bus)
    service.start()
    service.shutdown(timeout=1.0)

    assert service.topology_flisr is None
    assert service.topology_grid is not None


def test_startup_fails_without_cache(tmp_path, fake_bus, caplog):
    config = Configuration.load_from_file(str(_write_config(tmp_path)))
    service = GridLossService(
        config,
        use_cache_only=True,
        bus_factory=lambda *a: fake_bus,
        topology_cache=str(tmp_path / "none.json"),
    )

    with pytest.raises(CacheError):
        service.start()
    assert "Failed to load topology profile" in caplog.text
    assert service.dispatcher is None


def test_env_flag_lists_variables(capsys):
    assert main(["--env"]) == 0

    out = capsys.readouterr().out.split()
    assert "FLISR_CONFIG_API_USERNAME" in out
    assert "FLISR_GRID_LOSSES_LOG" in out


def test_missing_config_exits_non_zero(tmp_path):
    assert main(["--conf", str(tmp_path / "absent.yml")]) == 1


def test_missing_cache_exits_non_zero(tmp_path, monkeypatch, fake_bus):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    assert main(["--cache"], bus_factory=lambda *a: fake_bus) == 1


def test_publish_failure_stops_the_service(workdir, fake_bus):
    thread, result = run_in_thread(main, ["--cache"], lambda *a: fake_bus)
    assert fake_bus.loop_entered.wait(1.0)

    fake_bus.fail_send = True
    fake_bus.deliver(b'[{"id": 42, "value": 0}]')
    thread.join(timeout=5.0)

    assert result == [1]
    assert isinstance(fake_bus.stop_error, BusError)


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.conf == "grid_losses.yml"
    assert args.cache is False
    assert args.env is False


def _write_config(directory):
    path = directory / "grid_losses.yml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    return path


def test_diagnostics_address_without_port_exits_non_zero(workdir, fake_bus):
    with open("grid_losses.yml", "a", encoding="utf-8") as f:
        f.write('  http: "localhost"\n')

    assert main(["--cache"], bus_factory=lambda *a: fake_bus) == 1
    assert fake_bus.handlers == {}


def test_diagnostics_port_in_use_fails_before_workers_start(workdir, fake_bus, caplog):
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    try:
        config = Configuration.load_from_file("grid_losses.yml")
        config.grid_losses.http = f"127.0.0.1:{blocker.getsockname()[1]}"
        service = GridLossService(config, use_cache_only=True, bus_factory=lambda *a: fake_bus)

        with pytest.raises(DiagnosticsError):
            service.start()
        assert "Failed to open diagnostics API" in caplog.text
        assert not service.dispatcher.is_alive()

        service.shutdown(timeout=1.0)
        assert fake_bus.closed
    finally:
        blocker.close()


def test_diagnostics_server_runs_with_service(workdir, fake_bus):
    config = Configuration.load_from_file("grid_losses.yml")
    config.grid_losses.http = "127.0.0.1:0"
    service = GridLossService(config, use_cache_only=True, bus_factory=lambda *a: fake_bus)

    service.start()
    assert service.http is not None
    service.shutdown(timeout=1.0)
    assert fake_bus.closed


def test_bus_stays_open_while_a_worker_is_stuck(workdir, fake_bus, caplog):
    config = Configuration.load_from_file("grid_losses.yml")
    service = GridLossService(config, use_cache_only=True, bus_factory=lambda *a: fake_bus)
    service.start()

    release = threading.Event()
    fake_bus.send = lambda idx, data: release.wait(5.0)
    fake_bus.deliver(b'[{"id": 42, "value": 0}]')
    service.dispatcher.input_data_queue.join()

    service.shutdown(timeout=0.2)
    assert service.dispatcher.is_alive()
    assert not fake_bus.closed
    assert "bus left open" in caplog.text

    release.set()
    service.dispatcher.join(timeout=2.0)
    assert not service.dispatcher.is_alive()
