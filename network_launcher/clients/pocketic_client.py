"""
PocketIC Control Channel
========================

Async client for the PocketIC server's REST control API, and the configurator
that turns a LaunchConfiguration into a running network instance.

Flow (one round-trip, never retried):
    POST /instances                        create instance + HTTP gateway
    POST /instances/{id}/auto_progress     let time and blocks advance
    GET  /instances/{id}/read/topology     subnets + default effective canister
    POST /instances/{id}/read/pub_key      root key of the NNS subnet

Shutdown:
    DELETE /instances/{id}
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from network_launcher.config.launch_config import LaunchConfiguration, SubnetKind
from network_launcher.config.settings import LauncherSettings
from network_launcher.core.principal import Principal
from network_launcher.errors import ConfigurationRoundTripError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "DefaultConfig"

# Singleton subnet slots in the instance request; application, system and
# verified-application are lists.
_SINGLETON_SUBNETS = {
    SubnetKind.NNS: "nns",
    SubnetKind.SNS: "sns",
    SubnetKind.BITCOIN: "bitcoin",
    SubnetKind.FIDUCIARY: "fiduciary",
}
_LIST_SUBNETS = {
    SubnetKind.APPLICATION: "application",
    SubnetKind.SYSTEM: "system",
    SubnetKind.VERIFIED_APPLICATION: "verified_application",
}


def _new_subnet_spec() -> Dict[str, Any]:
    return {"state_config": "New", "instruction_config": "Production"}


@dataclass
class ConfiguredInstance:
    """A network instance created on the server."""
    instance_id: int
    config_port: int
    gateway_port: int
    topology: Dict[str, Any] = field(default_factory=dict)
    default_effective_canister_id: bytes = b""
    root_key: bytes = b""


# =============================================================================
# REST Client
# =============================================================================

class PocketIcClient:
    """
    Thin aiohttp wrapper around the PocketIC REST API.

    Every failure (transport, timeout, HTTP status, error payload) surfaces
    as ConfigurationRoundTripError.
    """

    def __init__(self, base_url: str, timeout: float = 300.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, step: str, payload: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"[PocketIC] {method} {url}")
        try:
            async with self._get_session().request(method, url, json=payload) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ConfigurationRoundTripError(
                        f"failed to {step}: HTTP {response.status} from {path}: {body.strip()}"
                    )
                text = await response.text()
                if not text.strip():
                    return None
                return json.loads(text)
        except ConfigurationRoundTripError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ConfigurationRoundTripError(f"failed to {step}", cause=e) from e

    async def create_instance(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Create an instance; returns the ``Created`` payload."""
        body = await self._request("POST", "/instances", "create network instance", request)
        if not isinstance(body, dict):
            raise ConfigurationRoundTripError("failed to create network instance: empty response")
        if "Error" in body:
            message = (body["Error"] or {}).get("message", "unknown error")
            raise ConfigurationRoundTripError(f"failed to create network instance: {message}")
        if "Created" not in body:
            raise ConfigurationRoundTripError(
                f"failed to create network instance: unexpected response {body!r}"
            )
        return body["Created"]

    async def set_auto_progress(self, instance_id: int, artificial_delay_ms: Optional[int]) -> None:
        await self._request(
            "POST",
            f"/instances/{instance_id}/auto_progress",
            "configure pocket-ic for auto-progress",
            {"artificial_delay_ms": artificial_delay_ms},
        )

    async def get_topology(self, instance_id: int) -> Dict[str, Any]:
        topology = await self._request(
            "GET", f"/instances/{instance_id}/read/topology", "read network topology"
        )
        if not isinstance(topology, dict):
            raise ConfigurationRoundTripError("failed to read network topology: empty response")
        return topology

    async def get_root_key(self, instance_id: int, subnet_id: Principal) -> bytes:
        key = await self._request(
            "POST",
            f"/instances/{instance_id}/read/pub_key",
            "read root key",
            {"subnet_id": subnet_id.to_base64()},
        )
        if not isinstance(key, list):
            raise ConfigurationRoundTripError(
                f"failed to read root key: expected a byte array, got {type(key).__name__}"
            )
        try:
            return bytes(key)
        except (TypeError, ValueError) as e:
            raise ConfigurationRoundTripError("failed to read root key", cause=e) from e

    async def delete_instance(self, instance_id: int) -> None:
        await self._request("DELETE", f"/instances/{instance_id}", "stop network instance")


# =============================================================================
# Configurator
# =============================================================================

class ControlChannelConfigurator:
    """Creates and later stops the network instance described by a LaunchConfiguration."""

    def __init__(self, config: LaunchConfiguration, settings: Optional[LauncherSettings] = None):
        self.config = config
        self.settings = settings or LauncherSettings()
        self.client: Optional[PocketIcClient] = None
        self.instance: Optional[ConfiguredInstance] = None

    def build_subnet_config(self) -> Dict[str, Any]:
        subnets: Dict[str, Any] = {name: None for name in _SINGLETON_SUBNETS.values()}
        subnets["ii"] = None
        for name in _LIST_SUBNETS.values():
            subnets[name] = []

        requested: List[SubnetKind] = list(self.config.subnets) or [SubnetKind.APPLICATION]
        for kind in requested:
            if kind in _LIST_SUBNETS:
                subnets[_LIST_SUBNETS[kind]].append(_new_subnet_spec())
            else:
                subnets[_SINGLETON_SUBNETS[kind]] = _new_subnet_spec()

        # the root key comes from the NNS subnet, so there always is one
        subnets["nns"] = _new_subnet_spec()
        if self.config.ii or self.config.nns:
            subnets["ii"] = _new_subnet_spec()
        if self.config.nns:
            subnets["sns"] = _new_subnet_spec()
        return subnets

    def build_icp_features(self) -> Dict[str, str]:
        features = {
            "cycles_minting": DEFAULT_CONFIG,
            "icp_token": DEFAULT_CONFIG,
            "cycles_token": DEFAULT_CONFIG,
        }
        if self.config.ii or self.config.nns:
            features["ii"] = DEFAULT_CONFIG
        if self.config.nns:
            features["nns_governance"] = DEFAULT_CONFIG
            features["nns_ui"] = DEFAULT_CONFIG
            features["sns"] = DEFAULT_CONFIG
        return features

    def build_instance_request(self) -> Dict[str, Any]:
        """JSON body for ``POST /instances``."""
        config = self.config
        return {
            "subnet_config_set": self.build_subnet_config(),
            "state_dir": str(config.state_dir) if config.state_dir is not None else None,
            "http_gateway_config": {
                "ip_addr": str(config.bind) if config.bind is not None else None,
                "port": config.gateway_port,
                "domains": ["localhost"],
                "https_config": None,
            },
            "icp_features": self.build_icp_features(),
            "bitcoind_addr": [str(a) for a in config.bitcoind_addrs] or None,
            "dogecoind_addr": [str(a) for a in config.dogecoind_addrs] or None,
        }

    async def configure(self, config_port: int) -> ConfiguredInstance:
        """
        Create the instance on the server listening at ``config_port``.

        Raises:
            ConfigurationRoundTripError: if any control call fails
        """
        self.client = PocketIcClient(
            f"http://127.0.0.1:{config_port}/", timeout=self.settings.control_timeout
        )
        client = self.client

        created = await client.create_instance(self.build_instance_request())
        try:
            instance_id = int(created["instance_id"])
            gateway_port = int(created["http_gateway_info"]["port"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationRoundTripError("failed to create network instance", cause=e) from e

        self.instance = ConfiguredInstance(
            instance_id=instance_id,
            config_port=config_port,
            gateway_port=gateway_port,
        )
        logger.info(f"[PocketIC] Created instance {instance_id}, gateway on port {gateway_port}")

        await client.set_auto_progress(instance_id, self.config.artificial_delay_ms)

        topology = await client.get_topology(instance_id)
        self.instance.topology = topology
        try:
            self.instance.default_effective_canister_id = base64.b64decode(
                topology["default_effective_canister_id"]["canister_id"]
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationRoundTripError("failed to read network topology", cause=e) from e

        root_subnet = self._find_root_subnet(topology)
        self.instance.root_key = await client.get_root_key(instance_id, root_subnet)
        logger.debug(
            f"[PocketIC] Root key from subnet {root_subnet} ({len(self.instance.root_key)} bytes)"
        )
        return self.instance

    @staticmethod
    def _find_root_subnet(topology: Dict[str, Any]) -> Principal:
        subnet_configs = topology.get("subnet_configs") or {}
        if not isinstance(subnet_configs, dict):
            raise ConfigurationRoundTripError("failed to read network topology: malformed subnet_configs")
        for subnet_id, subnet in subnet_configs.items():
            if not isinstance(subnet, dict):
                raise ConfigurationRoundTripError(
                    f"failed to read network topology: malformed entry for subnet {subnet_id}"
                )
            if str(subnet.get("subnet_kind", "")).upper() == "NNS":
                try:
                    return Principal.from_text(subnet_id)
                except ValueError as e:
                    raise ConfigurationRoundTripError(
                        "failed to read network topology", cause=e
                    ) from e
        raise ConfigurationRoundTripError("failed to read root key: topology has no NNS subnet")

    async def stop(self) -> None:
        """Delete the instance, if one was created. Not retried."""
        try:
            if self.client is not None and self.instance is not None:
                await self.client.delete_instance(self.instance.instance_id)
                logger.info(f"[PocketIC] Stopped instance {self.instance.instance_id}")
        finally:
            await self.close()

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
