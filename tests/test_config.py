import json

from directory_toolkit.config import ToolkitConfig
from directory_toolkit.profiles import ProfileStore, TenantProfile, resolve_profile


def test_defaults():
    config = ToolkitConfig()
    assert config.auth.mode == "certificate"
    assert config.ldap.effective_port == 636
    assert config.output.formats == ["json", "csv", "markdown"]
    assert config.output.reports_dir == config.output.run_dir / "reports"


def test_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "auth": {
            "mode": "certificate",
            "certificate": {"tenant_id": "t1", "client_id": "c1", "certificate_path": "/certs/app.b64"},
        },
        "ldap": {"server": "dc01", "base_dn": "DC=contoso,DC=com", "use_ssl": False},
        "collection": {"include_first_party_apps": True, "high_privilege_permissions": ["Mail.Send"]},
        "output": {"base_dir": str(tmp_path / "out"), "formats": ["json"]},
        "cache_enabled": False,
    }))

    config = ToolkitConfig.from_file(path)

    assert config.auth.certificate.tenant_id == "t1"
    assert config.auth.certificate.certificate_path == "/certs/app.b64"
    assert config.ldap.server == "dc01"
    assert config.ldap.effective_port == 389
    assert config.collection.include_first_party_apps is True
    assert config.collection.high_privilege_permissions == {"Mail.Send"}
    assert config.output.formats == ["json"]
    assert config.cache_enabled is False


def test_profile_store_crud(tmp_path):
    path = tmp_path / "profiles.json"
    store = ProfileStore.load(path)
    assert store.list_profiles() == []

    store.add(TenantProfile(name="contoso-prod", tenant_id="t1", client_id="c1", ldap_server="dc01"))
    store.add(TenantProfile(name="fabrikam", tenant_id="t2", client_id="c2"))

    reloaded = ProfileStore.load(path)
    assert reloaded.default_profile == "contoso-prod"
    assert [p.name for p in reloaded.list_profiles()] == ["contoso-prod", "fabrikam"]
    assert reloaded.get("CONTOSO-PROD").ldap_server == "dc01"

    assert reloaded.set_default("fabrikam")
    assert resolve_profile(path=path).name == "fabrikam"

    assert reloaded.remove("fabrikam")
    assert not reloaded.remove("fabrikam")
    assert ProfileStore.load(path).default_profile == "contoso-prod"


def test_profile_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "profiles.json"
    path.write_text("{not json")
    assert ProfileStore.load(path).profiles == {}
