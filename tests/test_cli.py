import pytest
from prometheus_client import CollectorRegistry

from pharos_exporter.cli import build_parser, build_supervisor, main
from pharos_exporter.errors import ConfigError, InvalidAddress
from pharos_exporter.metrics import MetricsState
from conftest import MY_KEY


def parse(*argv):
    return build_parser().parse_args(["start", *argv])


def test_defaults():
    args = parse("--log-path", "/tmp/node.log")
    assert args.rpc == "https://atlantic-rpc.dplabs-internal.com/"
    assert args.check_block_proof and args.check_validator_set
    assert args.check_propose and args.check_endorse
    assert args.log_from_start is False
    assert args.exporter_port == 9123
    assert args.rpc_poll_interval == 1.0


def test_build_supervisor_wires_config():
    args = parse("--log-path", "/tmp/node.log", "--my-bls-key", MY_KEY,
                 "--no-check-propose", "--log-from-start", "--exporter-port", "9200")
    metrics = MetricsState(CollectorRegistry())
    sup = build_supervisor(args, metrics)

    assert sup.metrics_port == 9200
    assert sup.registry is metrics.registry
    assert sup.follower.config.check_propose is False
    assert sup.follower.config.check_endorse is True
    assert sup.follower.config.from_start is True
    assert sup.poller.identity.bls_key == "ab" * 48
    assert sup.poller.metrics is sup.follower.metrics


def test_log_path_required():
    with pytest.raises(ConfigError):
        build_supervisor(parse("--my-bls-key", MY_KEY), MetricsState(CollectorRegistry()))


def test_bad_address_rejected_before_start():
    args = parse("--log-path", "/tmp/node.log", "--my-bls-key", MY_KEY, "--my-address", "0x12")
    with pytest.raises(InvalidAddress):
        build_supervisor(args, MetricsState(CollectorRegistry()))


def test_main_missing_command_exits_1():
    assert main([]) == 1


def test_main_config_error_exits_1():
    assert main(["start", "--my-bls-key", MY_KEY]) == 1


def test_main_unknown_command():
    with pytest.raises(SystemExit) as exc:
        main(["stop"])
    assert exc.value.code != 0
