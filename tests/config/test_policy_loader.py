import os
from pathlib import Path

import pytest
import yaml

from src.config.policy import (
    DEFAULT_QUOTA_KEY,
    PolicyLoadError,
    PolicyProvider,
    RawQuota,
    load_policy,
)


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "policy.yaml"
    path.write_text(yaml.safe_dump(data, allow_unicode=False), encoding="utf-8")
    return path


def _base() -> dict:
    return yaml.safe_load(Path("config/policy.yaml").read_text(encoding="utf-8"))


def test_policy_loader_reads_bundled_policy() -> None:
    policy = load_policy(Path("config/policy.yaml"))
    assert policy.rate_limit.enabled is True
    assert policy.rate_limit.default == RawQuota(limit=100, interval_minutes=1440)
    assert policy.rate_limit.roles["new_member"] == RawQuota(limit=5, interval_minutes=10)
    assert policy.messages.kind == "private_message"


def test_policy_loader_keeps_malformed_quota_raw(tmp_path: Path) -> None:
    src = _base()
    src["rate_limit"]["roles"]["broken"] = {"limit": "lots"}
    src["rate_limit"]["roles"]["empty"] = None

    policy = load_policy(_write(tmp_path, src))
    assert policy.rate_limit.roles["broken"] == RawQuota(limit="lots", interval_minutes=None)
    assert policy.rate_limit.roles["empty"] == RawQuota()


def test_policy_loader_rejects_reserved_role_id(tmp_path: Path) -> None:
    src = _base()
    src["rate_limit"]["roles"][DEFAULT_QUOTA_KEY] = {"limit": 1, "interval_minutes": 1}
    with pytest.raises(PolicyLoadError):
        load_policy(_write(tmp_path, src))


def test_policy_loader_rejects_non_boolean_toggle(tmp_path: Path) -> None:
    src = _base()
    src["rate_limit"]["enabled"] = "yes please"
    with pytest.raises(PolicyLoadError):
        load_policy(_write(tmp_path, src))


def test_policy_loader_rejects_missing_sections(tmp_path: Path) -> None:
    src = _base()
    del src["storage"]
    with pytest.raises(PolicyLoadError):
        load_policy(_write(tmp_path, src))


def test_policy_loader_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(PolicyLoadError):
        load_policy(tmp_path / "nope.yaml")


def test_provider_picks_up_admin_changes(tmp_path: Path) -> None:
    src = _base()
    path = _write(tmp_path, src)
    provider = PolicyProvider(path)
    assert provider.current().rate_limit.enabled is True

    src["rate_limit"]["enabled"] = False
    path.write_text(yaml.safe_dump(src, allow_unicode=False), encoding="utf-8")
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

    assert provider.current().rate_limit.enabled is False


@pytest.mark.parametrize("value", ["many", None, [3], True, 0, 51])
def test_policy_loader_rejects_bad_max_recipients(tmp_path: Path, value: object) -> None:
    src = _base()
    src["messages"]["max_recipients"] = value
    with pytest.raises(PolicyLoadError):
        load_policy(_write(tmp_path, src))
