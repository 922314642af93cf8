"""
Minimal stand-in for the pocket-ic server, used by the end-to-end tests.

Accepts the flags the launcher passes, serves the handful of control API
routes the launcher calls, writes ``<port>\\n`` to --port-file once listening
and exits on SIGINT.

Environment:
- FAKE_POCKET_IC_RECORD: path to write {"pid", "port", "argv", "deleted"} to
- FAKE_POCKET_IC_IGNORE_SIGINT=1: ignore SIGINT (forces the launcher to kill)
- FAKE_POCKET_IC_FAIL_CREATE=1: answer instance creation with an Error payload
"""

import argparse
import asyncio
import base64
import json
import os
import signal
import sys
import zlib

from aiohttp import web

# DER header of a BLS12-381 G2 public key followed by the 96-byte key
ROOT_KEY = bytes.fromhex(
    "308182301d060d2b0601040182dc7c0503010201060c2b0601040182dc7c05030201036100"
) + bytes(range(96))

NNS_SUBNET_BYTES = bytes([0x01] * 28 + [0x02])
APP_SUBNET_BYTES = bytes([0x03] * 28 + [0x02])
DEFAULT_EFFECTIVE_CANISTER = bytes.fromhex("00000000000000010101")
GATEWAY_PORT = 48080

REQUESTS = web.AppKey("requests", list)


def principal_text(raw: bytes) -> str:
    checksum = zlib.crc32(raw).to_bytes(4, "big")
    encoded = base64.b32encode(checksum + raw).decode("ascii").lower().rstrip("=")
    return "-".join(encoded[i:i + 5] for i in range(0, len(encoded), 5))


def record(update):
    path = os.environ.get("FAKE_POCKET_IC_RECORD")
    if not path:
        return
    data = {}
    if os.path.exists(path):
        with open(path) as f:
            data = json.load(f)
    data.update(update)
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(data, f)
    os.replace(tmp, path)


def topology():
    return {
        "subnet_configs": {
            principal_text(NNS_SUBNET_BYTES): {"subnet_kind": "NNS", "size": 1},
            principal_text(APP_SUBNET_BYTES): {"subnet_kind": "Application", "size": 1},
        },
        "default_effective_canister_id": {
            "canister_id": base64.b64encode(DEFAULT_EFFECTIVE_CANISTER).decode("ascii"),
        },
    }


async def create_instance(request):
    body = await request.json()
    request.app[REQUESTS].append(body)
    if os.environ.get("FAKE_POCKET_IC_FAIL_CREATE") == "1":
        return web.json_response({"Error": {"message": "subnet config rejected"}}, status=400)
    gateway = body.get("http_gateway_config") or {}
    return web.json_response(
        {
            "Created": {
                "instance_id": 0,
                "topology": topology(),
                "http_gateway_info": {"instance_id": 0, "port": gateway.get("port") or GATEWAY_PORT},
            }
        },
        status=201,
    )


async def auto_progress(request):
    await request.json()
    return web.Response(status=200)


async def read_topology(request):
    return web.json_response(topology())


async def read_pub_key(request):
    body = await request.json()
    if base64.b64decode(body["subnet_id"]) != NNS_SUBNET_BYTES:
        return web.json_response({"message": "unknown subnet"}, status=404)
    return web.json_response(list(ROOT_KEY))


async def delete_instance(request):
    record({"deleted": int(request.match_info["instance_id"])})
    return web.Response(status=200)


def build_app(topology_handler=read_topology, pub_key_handler=read_pub_key):
    app = web.Application()
    app[REQUESTS] = []
    app.router.add_post("/instances", create_instance)
    app.router.add_post("/instances/{instance_id}/auto_progress", auto_progress)
    app.router.add_get("/instances/{instance_id}/read/topology", topology_handler)
    app.router.add_post("/instances/{instance_id}/read/pub_key", pub_key_handler)
    app.router.add_delete("/instances/{instance_id}", delete_instance)
    return app


async def serve(args):
    stop = asyncio.Event()
    if os.environ.get("FAKE_POCKET_IC_IGNORE_SIGINT") == "1":
        signal.signal(signal.SIGINT, signal.SIG_IGN)
    else:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, stop.set)

    runner = web.AppRunner(build_app())
    await runner.setup()
    site = web.TCPSite(runner, args.ip_addr, args.port)
    await site.start()
    port = runner.addresses[0][1]

    record({"pid": os.getpid(), "port": port, "argv": sys.argv[1:]})
    with open(args.port_file, "w") as f:
        f.write(f"{port}\n")

    await stop.wait()
    await runner.cleanup()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--ttl", type=int)
    parser.add_argument("--port-file", required=True)
    parser.add_argument("--port", type=int, default=0)
    parser.add_argument("--ip-addr", default="127.0.0.1")
    parser.add_argument("--log-levels")
    args = parser.parse_args()
    exit_early = os.environ.get("FAKE_POCKET_IC_EXIT_BEFORE_PORT")
    if exit_early:
        sys.exit(int(exit_early))
    asyncio.run(serve(args))


if __name__ == "__main__":
    main()
