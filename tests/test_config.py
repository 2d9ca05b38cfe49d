"""
Tests for YAML configuration loading and validation.
"""

import pytest

from fronius_sunspec.config import ConfigLoader, ModbusConfig, get_config


def _write(tmp_path, text: str) -> str:
    path = tmp_path / "fronius_sunspec.yaml"
    path.write_text(text)
    return str(path)


class TestModbusConfig:
    def test_defaults_validate_with_host(self):
        ModbusConfig(host='192.0.2.10').validate()

    @pytest.mark.parametrize("kwargs,message", [
        ({'slave_id': 0}, 'slave_id'),
        ({'slave_id': 248}, 'slave_id'),
        ({'port': 0}, 'port'),
        ({'baud': 0}, 'baud'),
        ({'reconnect_delay': 320}, 'reconnect_delay'),
        ({'sec_timeout': 0, 'usec_timeout': 0}, 'timeout'),
        ({'usec_timeout': 1_000_000}, 'usec_timeout'),
        ({'host': ''}, 'host'),
        ({'use_tcp': False}, 'device'),
    ])
    def test_invalid(self, kwargs, message):
        fields = {'host': '192.0.2.10'}
        fields.update(kwargs)
        with pytest.raises(ValueError, match=message):
            ModbusConfig(**fields).validate()

    def test_for_slave_copies(self):
        base = ModbusConfig(host='192.0.2.10', slave_id=1)
        meter = base.for_slave(240)
        assert meter.slave_id == 240
        assert meter.host == '192.0.2.10'
        assert base.slave_id == 1

    def test_for_slave_validates(self):
        with pytest.raises(ValueError):
            ModbusConfig(host='192.0.2.10').for_slave(300)


class TestConfigLoader:
    def test_full_file(self, tmp_path):
        path = _write(tmp_path, """
general:
  log_level: DEBUG
  poll_interval: 10
  publish_mode: all
modbus:
  host: 192.0.2.10
  port: 1502
  reconnect_delay: 2
  reconnect_delay_max: 60
  exponential: false
devices:
  inverters: [1, 2]
  meters: 240
  read_controls: true
mqtt:
  broker: broker.local
  topic_prefix: solar
""")
        config = ConfigLoader(path)
        assert config.general.log_level == 'DEBUG'
        assert config.general.publish_mode == 'all'
        assert config.modbus.port == 1502
        assert config.modbus.exponential is False
        assert config.devices.inverters == [1, 2]
        assert config.devices.meters == [240]
        assert config.devices.read_storage is True
        assert config.devices.read_controls is True
        assert config.mqtt.broker == 'broker.local'
        assert config.mqtt.topic_prefix == 'solar'

    def test_defaults(self, tmp_path):
        config = ConfigLoader(_write(tmp_path, "modbus:\n  host: 192.0.2.10\n"))
        assert config.devices.inverters == [1]
        assert config.devices.meters == [240]
        assert config.modbus.reconnect_delay == 5
        assert config.modbus.reconnect_delay_max == 320
        assert config.mqtt.enabled is True

    def test_missing_host(self, tmp_path):
        with pytest.raises(ValueError, match="host"):
            ConfigLoader(_write(tmp_path, "modbus:\n  port: 502\n"))

    def test_invalid_unit_id(self, tmp_path):
        path = _write(tmp_path, "modbus:\n  host: h\ndevices:\n  meters: [250]\n")
        with pytest.raises(ValueError, match="250"):
            ConfigLoader(path)

    def test_environment_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = tmp_path / "env.yaml"
        path.write_text("modbus:\n  host: from-env\n")
        monkeypatch.setenv('FRONIUS_SUNSPEC_CONFIG', str(path))
        assert ConfigLoader().modbus.host == 'from-env'

    def test_not_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv('FRONIUS_SUNSPEC_CONFIG', raising=False)
        with pytest.raises(FileNotFoundError):
            ConfigLoader(str(tmp_path / "missing.yaml"))

    def test_singleton(self, tmp_path):
        path = _write(tmp_path, "modbus:\n  host: h\n")
        assert get_config(path) is get_config()
