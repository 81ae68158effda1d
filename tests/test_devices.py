import asyncio
from datetime import datetime, timedelta, timezone

from core.espgrow.devices import DeviceStore
from core.espgrow.models import DeviceUpdate

from helpers import connected_channel, settle

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

DEVICES = [
    {
        "id": "fan1",
        "name": "Exhaust Fan",
        "type": "fan",
        "controlMethod": "shelly_gen2",
        "ipAddress": "192.168.1.60",
        "isOn": False,
    },
    {
        "id": "light1",
        "name": "Grow Light",
        "type": "light",
        "controlMethod": "relay",
        "gpioPin": 5,
        "isOn": True,
    },
]


async def device_store(**kwargs):
    channel, connection = await connected_channel()
    store = DeviceStore(channel, now=lambda: NOW, **kwargs)
    connection.push({"type": "devices", "data": DEVICES})
    await settle()
    return store, channel, connection


def test_devices_push_replaces_list():
    async def scenario():
        store, channel, connection = await device_store()
        assert [d.id for d in store.devices] == ["fan1", "light1"]
        assert store.get("light1").target == "5"
        assert store.get("light1").is_on is True

        connection.push({"type": "devices", "data": DEVICES[:1]})
        await settle()
        assert [d.id for d in store.devices] == ["fan1"]
        await channel.aclose()

    asyncio.run(scenario())


def test_invalid_device_elements_are_skipped():
    async def scenario():
        store, channel, connection = await device_store()
        connection.push({"type": "devices", "data": [{"id": "", "name": "x"}, DEVICES[0]]})
        await settle()
        assert [d.id for d in store.devices] == ["fan1"]
        await channel.aclose()

    asyncio.run(scenario())


def test_toggle_sends_one_command_and_waits_for_confirmation():
    async def scenario():
        store, channel, connection = await device_store()

        assert store.toggle("fan1") is True
        assert store.toggle("fan1") is False
        await settle()

        assert connection.frames() == [{
            "type": "device_control",
            "data": {"method": "shelly_gen2", "target": "192.168.1.60", "on": True},
        }]
        assert store.is_pending("fan1")
        assert store.get("fan1").is_on is False

        connection.push({"type": "device_status", "deviceId": "fan1", "on": True, "success": True})
        await settle()

        assert store.get("fan1").is_on is True
        assert not store.is_pending("fan1")
        assert store.last_error is None
        await channel.aclose()

    asyncio.run(scenario())


def test_rejected_toggle_keeps_state_and_reports_error():
    async def scenario():
        store, channel, connection = await device_store()
        store.toggle("light1")

        connection.push({"type": "device_status", "deviceId": "light1", "on": False, "success": False})
        await settle()

        assert store.get("light1").is_on is True
        assert not store.is_pending("light1")
        assert "Grow Light" in store.last_error
        await channel.aclose()

    asyncio.run(scenario())


def test_confirmation_matched_by_target():
    async def scenario():
        store, channel, connection = await device_store()
        store.toggle("light1")

        connection.push({"type": "device_status", "target": "5", "on": False})
        await settle()

        assert store.get("light1").is_on is False
        assert not store.is_pending("light1")
        await channel.aclose()

    asyncio.run(scenario())


def test_toggles_of_different_devices_confirm_in_any_order():
    async def scenario():
        store, channel, connection = await device_store()
        store.toggle("fan1")
        store.toggle("light1")

        connection.push({"type": "device_status", "deviceId": "light1", "on": False})
        await settle()
        assert store.pending == {"fan1"}

        connection.push({"type": "device_status", "deviceId": "fan1", "on": True})
        await settle()
        assert store.pending == set()
        await channel.aclose()

    asyncio.run(scenario())


def test_unknown_device_toggle_is_ignored():
    async def scenario():
        store, channel, connection = await device_store()
        assert store.toggle("nope") is False
        await settle()
        assert connection.sent == []
        await channel.aclose()

    asyncio.run(scenario())


def test_unconfirmed_toggle_times_out():
    async def scenario():
        store, channel, connection = await device_store(toggle_timeout=0.01)
        store.toggle("fan1")
        await asyncio.sleep(0.05)

        assert not store.is_pending("fan1")
        assert store.get("fan1").is_on is False
        assert store.toggle("fan1") is True

        # Late confirmations apply once, repeats change nothing
        connection.push({"type": "device_status", "deviceId": "fan1", "on": True})
        connection.push({"type": "device_status", "deviceId": "fan1", "on": True})
        await settle()
        assert store.get("fan1").is_on is True
        assert not store.is_pending("fan1")
        await channel.aclose()

    asyncio.run(scenario())


def test_override_recorded_and_cleared():
    async def scenario():
        store, channel, connection = await device_store()
        connection.push({
            "type": "device_status",
            "deviceId": "fan1",
            "on": True,
            "overrideActive": True,
            "overrideRemainingMs": 120000,
        })
        await settle()

        assert store.override_expiry("fan1") == NOW + timedelta(seconds=120)
        assert store.override_remaining("fan1") == 120.0

        connection.push({"type": "override_cleared", "deviceId": "fan1"})
        await settle()
        assert store.override_expiry("fan1") is None
        await channel.aclose()

    asyncio.run(scenario())


def test_expired_override_reads_as_none():
    async def scenario():
        now = [NOW]
        channel, connection = await connected_channel()
        store = DeviceStore(channel, now=lambda: now[0])
        connection.push({"type": "devices", "data": DEVICES})
        connection.push({
            "type": "device_status",
            "deviceId": "fan1",
            "on": True,
            "overrideActive": True,
            "overrideRemainingMs": 1000,
        })
        await settle()

        now[0] = NOW + timedelta(seconds=2)
        assert store.override_expiry("fan1") is None
        assert "fan1" not in store.overrides
        await channel.aclose()

    asyncio.run(scenario())


def test_vanished_device_loses_pending_and_override():
    async def scenario():
        store, channel, connection = await device_store()
        store.toggle("light1")
        connection.push({
            "type": "device_status",
            "deviceId": "light1",
            "on": True,
            "overrideActive": True,
            "overrideRemainingMs": 60000,
        })
        await settle()
        store.toggle("light1")
        assert store.pending == {"light1"}
        assert "light1" in store.overrides

        connection.push({"type": "devices", "data": DEVICES[:1]})
        await settle()

        assert store.pending == set()
        assert store.overrides == {}
        await channel.aclose()

    asyncio.run(scenario())


def test_device_edits_are_sent_as_commands():
    async def scenario():
        store, channel, connection = await device_store()
        store.add_device("pump1", "Pump", "pump", "tasmota", "192.168.1.70")
        store.update_device("fan1", DeviceUpdate(name="Inline Fan"))
        store.remove_device("light1")
        await settle()

        assert connection.frames() == [
            {
                "type": "add_device",
                "data": {
                    "id": "pump1",
                    "name": "Pump",
                    "deviceType": "pump",
                    "controlMethod": "tasmota",
                    "ipAddress": "192.168.1.70",
                },
            },
            {"type": "update_device", "data": {"id": "fan1", "name": "Inline Fan"}},
            {"type": "remove_device", "data": {"id": "light1"}},
        ]
        # Nothing changes locally until the controller pushes the new list
        assert [d.id for d in store.devices] == ["fan1", "light1"]
        await channel.aclose()

    asyncio.run(scenario())
