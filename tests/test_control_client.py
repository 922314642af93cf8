"""Tests for the PocketIC control channel client."""

import ipaddress
from pathlib import Path

import pytest
from aiohttp import test_utils, web

import fake_pocket_ic
from network_launcher.clients.pocketic_client import ControlChannelConfigurator
from network_launcher.config import LaunchConfiguration, LauncherSettings, SocketAddress, SubnetKind
from network_launcher.errors import ConfigurationRoundTripError


def _configurator(**config):
    settings = LauncherSettings()
    settings.control_timeout = 10.0
    return ControlChannelConfigurator(LaunchConfiguration(**config), settings)


# =============================================================================
# Request building
# =============================================================================

def test_default_request_has_application_and_nns_subnets():
    request = _configurator().build_instance_request()
    subnets = request["subnet_config_set"]

    assert len(subnets["application"]) == 1
    assert subnets["nns"] is not None
    assert subnets["ii"] is None and subnets["sns"] is None
    assert subnets["system"] == [] and subnets["verified_application"] == []
    assert request["icp_features"] == {
        "cycles_minting": "DefaultConfig",
        "icp_token": "DefaultConfig",
        "cycles_token": "DefaultConfig",
    }
    assert request["http_gateway_config"] == {
        "ip_addr": None,
        "port": None,
        "domains": ["localhost"],
        "https_config": None,
    }
    assert request["state_dir"] is None
    assert request["bitcoind_addr"] is None and request["dogecoind_addr"] is None


def test_explicit_subnets_replace_default_application_subnet():
    request = _configurator(
        subnets=(SubnetKind.SYSTEM, SubnetKind.SYSTEM, SubnetKind.BITCOIN, SubnetKind.FIDUCIARY),
    ).build_instance_request()
    subnets = request["subnet_config_set"]

    assert subnets["application"] == []
    assert len(subnets["system"]) == 2
    assert subnets["bitcoin"] is not None and subnets["fiduciary"] is not None
    assert subnets["nns"] is not None


def test_ii_flag_adds_ii_subnet_and_feature():
    request = _configurator(ii=True).build_instance_request()
    assert request["subnet_config_set"]["ii"] is not None
    assert request["subnet_config_set"]["sns"] is None
    assert request["icp_features"]["ii"] == "DefaultConfig"
    assert "nns_governance" not in request["icp_features"]


def test_nns_flag_adds_ii_sns_and_governance_features():
    request = _configurator(nns=True).build_instance_request()
    subnets = request["subnet_config_set"]
    features = request["icp_features"]

    assert subnets["ii"] is not None and subnets["sns"] is not None
    for feature in ("ii", "nns_governance", "nns_ui", "sns", "cycles_minting"):
        assert features[feature] == "DefaultConfig"


def test_gateway_and_node_addresses(tmp_path):
    request = _configurator(
        bind=ipaddress.ip_address("127.0.0.1"),
        gateway_port=4943,
        state_dir=tmp_path,
        bitcoind_addrs=(SocketAddress.parse("127.0.0.1:18444"),),
        dogecoind_addrs=(SocketAddress.parse("[::1]:22556"), SocketAddress.parse("10.0.0.1:1")),
    ).build_instance_request()

    assert request["http_gateway_config"]["ip_addr"] == "127.0.0.1"
    assert request["http_gateway_config"]["port"] == 4943
    assert request["state_dir"] == str(tmp_path)
    assert request["bitcoind_addr"] == ["127.0.0.1:18444"]
    assert request["dogecoind_addr"] == ["[::1]:22556", "10.0.0.1:1"]


# =============================================================================
# Round trip against a fake server
# =============================================================================

@pytest.mark.asyncio
async def test_configure_reads_topology_and_root_key(monkeypatch):
    monkeypatch.delenv("FAKE_POCKET_IC_FAIL_CREATE", raising=False)
    app = fake_pocket_ic.build_app()
    async with test_utils.TestServer(app, host="127.0.0.1") as server:
        configurator = _configurator(gateway_port=4943, artificial_delay_ms=50)
        config_port = server.port
        try:
            instance = await configurator.configure(config_port)
        finally:
            await configurator.close()

    assert instance.instance_id == 0
    assert instance.config_port == config_port
    assert instance.gateway_port == 4943
    assert instance.default_effective_canister_id == bytes.fromhex("00000000000000010101")
    assert instance.root_key == fake_pocket_ic.ROOT_KEY
    assert len(instance.root_key) == 133
    assert app[fake_pocket_ic.REQUESTS][0]["http_gateway_config"]["port"] == 4943


@pytest.mark.asyncio
async def test_error_payload_is_a_round_trip_error(monkeypatch):
    monkeypatch.setenv("FAKE_POCKET_IC_FAIL_CREATE", "1")
    async with test_utils.TestServer(fake_pocket_ic.build_app(), host="127.0.0.1") as server:
        configurator = _configurator()
        try:
            with pytest.raises(ConfigurationRoundTripError, match="subnet config rejected"):
                await configurator.configure(server.port)
        finally:
            await configurator.close()
    assert configurator.instance is None


@pytest.mark.asyncio
async def test_http_failure_is_a_round_trip_error():
    async def broken(request):
        return web.Response(status=500, text="boom")

    app = web.Application()
    app.router.add_post("/instances", broken)
    async with test_utils.TestServer(app, host="127.0.0.1") as server:
        configurator = _configurator()
        try:
            with pytest.raises(ConfigurationRoundTripError, match="HTTP 500"):
                await configurator.configure(server.port)
        finally:
            await configurator.close()


@pytest.mark.asyncio
async def test_unreachable_server_is_a_round_trip_error(unused_tcp_port):
    configurator = _configurator()
    try:
        with pytest.raises(ConfigurationRoundTripError, match="failed to create network instance"):
            await configurator.configure(unused_tcp_port)
    finally:
        await configurator.close()


@pytest.mark.asyncio
async def test_stop_deletes_the_instance(monkeypatch, tmp_path):
    record = tmp_path / "record.json"
    monkeypatch.setenv("FAKE_POCKET_IC_RECORD", str(record))
    monkeypatch.delenv("FAKE_POCKET_IC_FAIL_CREATE", raising=False)
    async with test_utils.TestServer(fake_pocket_ic.build_app(), host="127.0.0.1") as server:
        configurator = _configurator()
        await configurator.configure(server.port)
        await configurator.stop()

    assert '"deleted": 0' in Path(record).read_text()


@pytest.mark.asyncio
async def test_non_array_root_key_is_a_round_trip_error(monkeypatch):
    monkeypatch.delenv("FAKE_POCKET_IC_FAIL_CREATE", raising=False)

    async def numeric_key(request):
        return web.json_response(133)

    app = fake_pocket_ic.build_app(pub_key_handler=numeric_key)
    async with test_utils.TestServer(app, host="127.0.0.1") as server:
        configurator = _configurator()
        try:
            with pytest.raises(ConfigurationRoundTripError, match="expected a byte array, got int"):
                await configurator.configure(server.port)
        finally:
            await configurator.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "subnet_configs,message",
    [
        (["not", "a", "mapping"], "malformed subnet_configs"),
        ({"aaaaa-aa": "NNS"}, "malformed entry for subnet aaaaa-aa"),
    ],
)
async def test_malformed_topology_is_a_round_trip_error(monkeypatch, subnet_configs, message):
    monkeypatch.delenv("FAKE_POCKET_IC_FAIL_CREATE", raising=False)

    async def malformed_topology(request):
        body = fake_pocket_ic.topology()
        body["subnet_configs"] = subnet_configs
        return web.json_response(body)

    app = fake_pocket_ic.build_app(topology_handler=malformed_topology)
    async with test_utils.TestServer(app, host="127.0.0.1") as server:
        configurator = _configurator()
        try:
            with pytest.raises(ConfigurationRoundTripError, match=message):
                await configurator.configure(server.port)
        finally:
            await configurator.close()
