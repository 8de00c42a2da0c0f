from __future__ import annotations

import copy

import pytest

from mobile_installer.configuration import build_snapshot

BASE_ANSWERS = {
    "info": {
        "fullname": "Jane Doe",
        "username": "jane",
        "hostname": "my-phone",
        "password": "x",
    },
    "environment": {"phone_environment": "phosh"},
    "fde": {"enable": True},
}

FAKE_HASH = "$6$saltsalt$fakehashvalue"


@pytest.fixture
def answers():
    return copy.deepcopy(BASE_ANSWERS)


@pytest.fixture
def snapshot(answers):
    return build_snapshot(answers)


@pytest.fixture
def fake_hasher():
    calls = []

    def hasher(password):
        calls.append(password)
        return FAKE_HASH

    hasher.calls = calls
    return hasher
