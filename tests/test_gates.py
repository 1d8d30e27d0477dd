from __future__ import annotations

import pytest

from fieldsync.core.gates import ConsentGate, consent_granted


@pytest.mark.parametrize("value", [True, 1, "yes", " Granted ", {"granted": True}])
def test_granted_values(value):
    assert consent_granted(value) is True


@pytest.mark.parametrize("value", [None, False, 0, 2, "no", "", {"granted": "no"}, ["yes"]])
def test_not_granted_values(value):
    assert consent_granted(value) is False


def test_gate_without_field_allows_everything():
    gate = ConsentGate(None)
    assert gate.enabled is False
    assert gate.allows({})


def test_gate_checks_configured_field():
    gate = ConsentGate("consent_crm_sync")
    assert gate.enabled
    assert gate.allows({"consent_crm_sync": "true"})
    assert not gate.allows({"name": "Jonas"})
