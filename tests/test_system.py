import asyncio

from core.espgrow.controller_settings import SettingsStore
from core.espgrow.system import SystemStore

from helpers import connected_channel, settle


def test_system_info_push():
    async def scenario():
        channel, connection = await connected_channel()
        store = SystemStore(channel)
        connection.push({"type": "system_info", "data": {
            "uptime": 3600,
            "freeHeap": 182000,
            "chipModel": "ESP32-S3",
            "wifiRssi": -61,
            "ipAddress": "192.168.1.50",
            "firmwareVersion": "1.4.2",
        }})
        await settle()

        assert store.info.chip_model == "ESP32-S3"
        assert store.info.wifi_rssi == -61
        await channel.aclose()

    asyncio.run(scenario())


def test_incomplete_system_info_is_dropped():
    async def scenario():
        channel, connection = await connected_channel()
        store = SystemStore(channel)
        connection.push({"type": "system_info", "data": {"uptime": 10}})
        await settle()

        assert store.info is None
        await channel.aclose()

    asyncio.run(scenario())


def test_ping_measures_round_trip():
    async def scenario():
        now = [10.0]
        channel, connection = await connected_channel()
        store = SystemStore(channel, clock=lambda: now[0])

        store.ping()
        await settle()
        assert connection.types() == ["ping"]

        now[0] = 10.042
        connection.push({"type": "pong", "timestamp": 987654})
        await settle()

        assert round(store.latency_ms) == 42
        assert store.last_pong_timestamp == 987654
        await channel.aclose()

    asyncio.run(scenario())


def test_ota_status():
    async def scenario():
        channel, connection = await connected_channel()
        store = SystemStore(channel)
        connection.push({"type": "ota_status", "status": "uploading", "progress": 40})
        await settle()
        assert (store.ota.status, store.ota.progress) == ("uploading", 40)

        connection.push({"type": "ota_status", "status": "error", "error": "checksum mismatch"})
        await settle()
        assert store.ota.error == "checksum mismatch"
        await channel.aclose()

    asyncio.run(scenario())


def test_controller_timezone():
    async def scenario():
        channel, connection = await connected_channel()
        store = SettingsStore(channel)
        connection.push({"type": "settings", "data": {"timezoneOffsetMinutes": 60}})
        await settle()
        assert store.timezone_offset_minutes == 60

        store.set_timezone(-300)
        offset = store.sync_timezone()
        await settle()

        frames = connection.frames()
        assert frames[0] == {"type": "set_timezone", "data": {"offsetMinutes": -300}}
        assert frames[1] == {"type": "set_timezone", "data": {"offsetMinutes": offset}}
        await channel.aclose()

    asyncio.run(scenario())
