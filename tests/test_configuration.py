import json

import pytest

from mobile_installer import configuration
from mobile_installer.configuration import (
    ConfigurationStore,
    FilesystemKind,
    PhoneEnvironment,
    build_snapshot,
    describe,
    format_description,
    persist_json,
)
from mobile_installer.errors import InvalidInput, IOFailure, UnsupportedEnvironment


def test_uuid_is_memoized_per_kind(answers):
    store = ConfigurationStore(answers)
    first = store.uuid(FilesystemKind.ROOTFS)
    assert store.uuid(FilesystemKind.ROOTFS) == first
    assert store.uuid("rootfs") == first
    assert store.uuid(FilesystemKind.LUKS) == store.uuid(FilesystemKind.LUKS)


def test_uuid_kinds_never_collide(answers):
    for _ in range(10000):
        store = ConfigurationStore(answers)
        assert store.uuid(FilesystemKind.ROOTFS) != store.uuid(FilesystemKind.LUKS)


def test_stores_do_not_share_uuids(answers):
    a = ConfigurationStore(answers)
    b = ConfigurationStore(answers)
    assert a.uuid(FilesystemKind.ROOTFS) != b.uuid(FilesystemKind.ROOTFS)


def test_snapshot_reuses_store_uuids(answers):
    store = ConfigurationStore(answers)
    snap1 = store.build_snapshot()
    snap2 = store.build_snapshot()
    assert snap1.filesystems == snap2.filesystems
    assert snap1.filesystems.rootfs.uuid == store.uuid(FilesystemKind.ROOTFS)
    assert snap1.filesystems.luks.uuid == store.uuid(FilesystemKind.LUKS)


@pytest.mark.parametrize(
    "hostname,label",
    [
        ("my-phone", "MY_PHONE_ROOT"),
        ("a.b_c-d", "A_B_C_D_ROOT"),
        ("averyveryverylonghostname", "AVERYVERYVE_ROOT"),
        ("x", "X_ROOT"),
    ],
)
def test_rootfs_label(answers, hostname, label):
    answers["info"]["hostname"] = hostname
    result = ConfigurationStore(answers).rootfs_label()
    assert result == label
    assert len(result) <= 16
    assert result.endswith("_ROOT")


def test_label_for_custom_prefix(answers):
    store = ConfigurationStore(answers)
    assert store.label_for("boot", prefix_length=2) == "MY_BOOT"
    assert store.rootfs_label(max_prefix_length=4) == "MY_P_ROOT"


def test_build_snapshot_fields(snapshot):
    assert snapshot.info.hostname == "my-phone"
    assert snapshot.info.username == "jane"
    assert snapshot.info.fullname == "Jane Doe"
    assert snapshot.environment.phone_environment is PhoneEnvironment.PHOSH
    assert snapshot.fde.enabled is True
    assert snapshot.filesystems.rootfs.label == "MY_PHONE_ROOT"
    assert snapshot.device is None


def test_snapshot_is_immutable(snapshot):
    with pytest.raises(AttributeError):
        snapshot.info.hostname = "other"


def test_password_not_in_repr(snapshot):
    assert "'x'" not in repr(snapshot)


@pytest.mark.parametrize(
    "section,key,value,field",
    [
        ("info", "hostname", "", "info.hostname"),
        ("info", "hostname", None, "info.hostname"),
        ("info", "hostname", "my phone", "info.hostname"),
        ("info", "username", "   ", "info.username"),
        ("info", "password", "", "info.password"),
        ("info", "password", "a\nb", "info.password"),
        ("environment", "phone_environment", None, "environment.phone_environment"),
        ("fde", "enable", "yes", "fde.enable"),
    ],
)
def test_build_snapshot_rejects_invalid_input(answers, section, key, value, field):
    answers[section][key] = value
    with pytest.raises(InvalidInput) as exc:
        build_snapshot(answers)
    assert exc.value.field == field


def test_build_snapshot_rejects_unknown_environment(answers):
    answers["environment"]["phone_environment"] = "unknown"
    with pytest.raises(UnsupportedEnvironment) as exc:
        build_snapshot(answers)
    assert exc.value.value == "unknown"


def test_build_snapshot_accepts_plasma_mobile_and_device(answers):
    answers["environment"]["phone_environment"] = "plamo"
    answers["device"] = "pine64-pinephone"
    snap = build_snapshot(answers)
    assert snap.environment.phone_environment is PhoneEnvironment.PLASMA_MOBILE
    assert snap.device == "pine64-pinephone"


def test_fde_defaults_to_disabled(answers):
    del answers["fde"]
    assert build_snapshot(answers).fde.enabled is False


def test_describe_rows(snapshot):
    assert describe(snapshot) == [
        ("FDE enabled", "yes"),
        ("Full name", "Jane Doe"),
        ("User name", "jane"),
        ("Host name", "my-phone"),
        ("Phone environment", "Phosh"),
    ]


def test_describe_maps_false_and_plasma(answers):
    answers["fde"]["enable"] = False
    answers["environment"]["phone_environment"] = "plamo"
    rows = dict(describe(build_snapshot(answers)))
    assert rows["FDE enabled"] == "no"
    assert rows["Phone environment"] == "Plasma Mobile"


def test_format_description(snapshot):
    text = format_description(describe(snapshot))
    lines = text.splitlines()
    assert lines[0] == ' - FDE enabled: "yes"'
    assert lines[3] == ' - Host name: "my-phone"'
    assert len(lines) == len(configuration.DESCRIPTION)


def test_persist_json_omits_password(tmp_path, snapshot):
    path = tmp_path / "debug" / "configuration.json"
    persist_json(snapshot, str(path))
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["info"] == {"fullname": "Jane Doe", "username": "jane", "hostname": "my-phone"}
    assert data["environment"] == {"phone_environment": "phosh"}
    assert data["fde"] == {"enable": True}
    assert data["filesystems"]["rootfs"]["uuid"] == snapshot.filesystems.rootfs.uuid
    assert data["filesystems"]["rootfs"]["label"] == "MY_PHONE_ROOT"
    assert data["filesystems"]["luks"]["uuid"] == snapshot.filesystems.luks.uuid
    assert "password" not in path.read_text(encoding="utf-8")


def test_persist_json_reports_io_failure(tmp_path, snapshot):
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")
    with pytest.raises(IOFailure):
        persist_json(snapshot, str(blocker / "dump.json"))


@pytest.mark.parametrize(
    "key,field",
    [("fullname", "info.fullname"), ("username", "info.username"), ("password", "info.password")],
)
def test_build_snapshot_rejects_unencodable_text(answers, key, field):
    answers["info"][key] = "Jane \ud800"
    with pytest.raises(InvalidInput) as exc:
        build_snapshot(answers)
    assert exc.value.field == field


def test_fullname_is_kept_as_entered(answers):
    answers["info"]["fullname"] = "  Jane Doe "
    snap = build_snapshot(answers)
    assert snap.info.fullname == "  Jane Doe "
    assert ("Full name", "  Jane Doe ") in describe(snap)
    assert ' - Full name: "  Jane Doe "' in format_description(describe(snap))
