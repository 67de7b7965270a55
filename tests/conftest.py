import socket
from types import SimpleNamespace

import pytest
import pytest_asyncio
from asyncua import Server, ua


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def environ(free_port: int) -> dict:
    return {
        "OPCUA_SERVER": f"opc.tcp://127.0.0.1:{free_port}/freeopcua/server/",
        "MONITORED_TAGS": "Temperature, Pressure",
        "OPCUA_SESSION_RETRY_LIMIT": "1",
        "OPCUA_RETRY_DELAY": "0",
        "OPCUA_WATCHDOG_INTERVAL": "0.1",
    }


@pytest_asyncio.fixture
async def ua_server(environ: dict):
    server = Server()
    await server.init()
    server.set_endpoint(environ["OPCUA_SERVER"])
    idx = await server.register_namespace("urn:ua-tag-monitor:test")

    plant = await server.nodes.objects.add_object(idx, "Plant")
    temperature = await plant.add_variable(ua.NodeId("Temperature", idx), "Temperature", 42)
    pressure = await plant.add_variable(ua.NodeId("Pressure", idx), "Pressure", 1.5)
    await temperature.set_writable()

    running = True

    async def stop() -> None:
        nonlocal running
        if running:
            running = False
            await server.stop()

    await server.start()
    try:
        yield SimpleNamespace(server=server, idx=idx, temperature=temperature, pressure=pressure, stop=stop)
    finally:
        await stop()
