"""Tests for operating state parsing and event flag decoding"""

import pytest

from fronius_sunspec.fronius_types import (EVENT_DESCRIPTIONS, EVENT_REGISTERS,
                                           MeterEvent, OperatingState, Vendor1,
                                           decode_events, parse_state)


class TestOperatingState:
    @pytest.mark.parametrize("state", list(OperatingState))
    def test_every_state_has_a_description(self, state):
        assert state.description

    def test_active_states(self):
        assert OperatingState.MPPT.is_active
        assert OperatingState.THROTTLED.is_active
        assert not OperatingState.SLEEPING.is_active

    def test_parse_fault(self):
        status = parse_state(7)
        assert status == {
            'code': 7,
            'name': 'FAULT',
            'description': 'One or more faults exist',
            'alarm': True,
        }

    def test_parse_unknown(self):
        status = parse_state(0)
        assert status['name'] == 'UNKNOWN'
        assert status['alarm'] is True

    def test_parse_not_implemented(self):
        assert parse_state(None)['name'] == 'UNKNOWN'


class TestEvents:
    def test_every_flag_has_a_description(self):
        for flag_class in EVENT_REGISTERS.values():
            for flag in flag_class:
                assert EVENT_DESCRIPTIONS[flag_class][flag]

    def test_same_bit_in_different_registers(self):
        events = decode_events({'EvtVnd1': 0x1, 'Evt': 0x4})
        assert events == [
            {'register': 'EvtVnd1', 'bit_value': Vendor1.INSULATION_FAULT.value,
             'name': 'INSULATION_FAULT', 'description': 'DC Insulation fault'},
            {'register': 'Evt', 'bit_value': MeterEvent.POWER_FAILURE.value,
             'name': 'POWER_FAILURE', 'description': 'Loss of power or phase'},
        ]

    def test_high_bit(self):
        events = decode_events({'EvtVnd2': 0x80000000})
        assert [e['name'] for e in events] == ['SUPPLY_VOLTAGE_FAULT']

    def test_none_and_zero_ignored(self):
        assert decode_events({'Evt1': None, 'EvtVnd1': 0}) == []

    def test_unknown_registers_ignored(self):
        assert decode_events({'Evt2': 0xFFFF}) == []
