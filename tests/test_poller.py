"""
Tests for the device poller.

Devices run against FakeTransport register maps; the publish callback is a
MagicMock.
"""

import errno
from unittest.mock import MagicMock

from fronius_sunspec.config import DevicesConfig, ModbusConfig
from fronius_sunspec.errors import ModbusError
from fronius_sunspec.inverter import Inverter
from fronius_sunspec.meter import Meter
from fronius_sunspec.poller import DevicePoller, PolledDevice, create_devices
from fronius_sunspec.registers import ModelFamily
from fronius_sunspec.transport import ReconnectPolicy

from conftest import FakeTransport, build_inverter, build_meter


def _polled_inverter(model_id=113, storage=True):
    transport = FakeTransport(slave_id=1)
    build_inverter(transport, model_id, storage=storage)
    return PolledDevice(Inverter(transport=transport), ReconnectPolicy(5, 40)), transport


def _polled_meter(model_id=213):
    transport = FakeTransport(slave_id=240)
    build_meter(transport, model_id)
    return PolledDevice(Meter(transport=transport), ReconnectPolicy(5, 40)), transport


class TestCreateDevices:
    def test_meters_first_with_own_unit_ids(self):
        devices = create_devices(
            ModbusConfig(host='192.0.2.10'),
            DevicesConfig(inverters=[1, 2], meters=[240])
        )
        assert [(p.kind, p.unit_id) for p in devices] == [
            ('meter', 240), ('inverter', 1), ('inverter', 2)
        ]
        assert devices[0].device.transport is not devices[1].device.transport

    def test_kind_filter(self):
        devices = create_devices(
            ModbusConfig(host='192.0.2.10'),
            DevicesConfig(inverters=[1], meters=[240]),
            kinds=('inverter',)
        )
        assert [p.kind for p in devices] == ['inverter']

    def test_policy_from_config(self):
        devices = create_devices(
            ModbusConfig(host='192.0.2.10', reconnect_delay=1, reconnect_delay_max=4),
            DevicesConfig(inverters=[1], meters=[])
        )
        assert devices[0].policy.max_delay == 4


class TestPollOnce:
    def test_validates_and_publishes(self):
        inverter, transport = _polled_inverter()
        transport.put_float(ModelFamily.INVERTER, 'W', 4200.0)
        meter, _ = _polled_meter()
        callback = MagicMock()
        poller = DevicePoller([meter, inverter], 5, callback)

        snapshots = poller.poll_once()

        assert set(snapshots) == {'meter/240', 'inverter/1'}
        assert snapshots['inverter/1']['W'] == 4200.0
        assert snapshots['inverter/1']['manufacturer'] == 'Fronius'
        assert snapshots['inverter/1']['device_id'] == 1
        assert 'storage' in snapshots['inverter/1']
        assert transport.connected
        assert callback.call_count == 2
        callback.assert_any_call(240, 'meter', snapshots['meter/240'])
        assert poller.get_stats()['successful_polls'] == 2

    def test_second_poll_only_fetches_blocks(self):
        inverter, transport = _polled_inverter()
        poller = DevicePoller([inverter], 5, MagicMock(), read_storage=False)
        poller.poll_once()
        transport.reads.clear()
        poller.poll_once()
        assert 40000 not in [address for address, _ in transport.reads]

    def test_controls_only_when_enabled(self):
        inverter, transport = _polled_inverter()
        poller = DevicePoller([inverter], 5, MagicMock(), read_controls=True)
        data = poller.poll_once()['inverter/1']
        assert 'controls' in data

    def test_transient_failure_backs_off_and_disconnects(self):
        inverter, transport = _polled_inverter()
        transport.errors[40071] = ModbusError.transient("timeout", errno.ETIMEDOUT)
        callback = MagicMock()
        poller = DevicePoller([inverter], 5, callback)

        assert poller.poll_once() == {}
        callback.assert_not_called()
        assert inverter.next_attempt > 0
        assert inverter.policy.delay == 10
        assert 'timeout' in inverter.last_error
        assert not transport.connected

        # Still backing off
        transport.errors.clear()
        transport.reads.clear()
        assert poller.poll_once() == {}
        assert transport.reads == []

    def test_recovers_after_backoff(self):
        inverter, transport = _polled_inverter()
        transport.errors[40071] = ModbusError.transient("timeout")
        poller = DevicePoller([inverter], 5, MagicMock())
        poller.poll_once()

        transport.errors.clear()
        inverter.next_attempt = 0
        assert 'inverter/1' in poller.poll_once()
        assert inverter.policy.delay == 5
        assert inverter.last_error is None

    def test_failed_poll_forces_revalidation(self):
        inverter, transport = _polled_inverter()
        poller = DevicePoller([inverter], 5, MagicMock())
        poller.poll_once()
        assert inverter.device.is_valid

        transport.errors[40339] = ModbusError.transient("timeout")
        poller.poll_once()
        assert not inverter.device.is_valid

        transport.errors.clear()
        transport.reads.clear()
        inverter.next_attempt = 0
        poller.poll_once()
        assert transport.reads[0] == (40000, 4)

    def test_fatal_failure_keeps_connection(self):
        meter, transport = _polled_meter()
        transport.put(40069, [999, 124])
        poller = DevicePoller([meter], 5, MagicMock())
        poller.poll_once()
        assert transport.connected
        stats = poller.get_stats()
        assert stats['failed_polls'] == 1
        assert stats['devices']['meter/240']['valid'] is False
        assert '999' in stats['devices']['meter/240']['last_error']

    def test_one_failing_device_does_not_block_others(self):
        inverter, inverter_transport = _polled_inverter()
        meter, meter_transport = _polled_meter()
        meter_transport.errors[40000] = ModbusError.transient("timeout")
        poller = DevicePoller([meter, inverter], 5, MagicMock())
        assert list(poller.poll_once()) == ['inverter/1']

    def test_reconnects_when_still_valid(self):
        inverter, transport = _polled_inverter()
        transport.require_connection = True
        poller = DevicePoller([inverter], 5, MagicMock())
        assert 'inverter/1' in poller.poll_once()

        # Storage read times out after the inverter blocks were fetched
        transport.errors[40313] = ModbusError.transient("timeout")
        assert poller.poll_once() == {}
        assert inverter.device.is_valid
        assert not transport.connected

        transport.errors.clear()
        inverter.next_attempt = 0
        assert 'inverter/1' in poller.poll_once()
        assert transport.connected
        assert inverter.last_error is None

    def test_publish_error_keeps_polling(self):
        inverter, _ = _polled_inverter()
        meter, _ = _polled_meter()
        callback = MagicMock(side_effect=ValueError("Publish topic cannot contain wildcards."))
        poller = DevicePoller([meter, inverter], 5, callback)
        assert set(poller.poll_once()) == {'meter/240', 'inverter/1'}
        assert callback.call_count == 2
        assert poller.get_stats()['successful_polls'] == 2


class TestHooks:
    def test_on_connect_after_validation(self):
        inverter, _ = _polled_inverter()
        on_connect = MagicMock()
        poller = DevicePoller([inverter], 5, MagicMock(), on_connect=on_connect)
        poller.poll_once()
        poller.poll_once()
        on_connect.assert_called_once()
        unit_id, kind, info = on_connect.call_args.args
        assert (unit_id, kind) == (1, 'inverter')
        assert info['manufacturer'] == 'Fronius'

    def test_on_error_receives_error(self):
        meter, transport = _polled_meter()
        transport.errors[40000] = ModbusError.transient("timeout", errno.ETIMEDOUT)
        on_error = MagicMock()
        poller = DevicePoller([meter], 5, MagicMock(), on_error=on_error)
        poller.poll_once()
        unit_id, kind, error = on_error.call_args.args
        assert (unit_id, kind) == (240, 'meter')
        assert error.code == errno.ETIMEDOUT
        assert error.is_transient


class TestThread:
    def test_stop(self):
        inverter, transport = _polled_inverter()
        callback = MagicMock()
        poller = DevicePoller([inverter], 60, callback)
        poller.start()
        poller.stop()
        poller.join(timeout=5)
        assert not poller.is_alive()
        assert not poller.running
        assert not transport.connected
