import pytest

from directory_toolkit.safety.guardian import ChangeGuardian, SafetyViolation

GRAPH = "https://graph.microsoft.com/v1.0"


def test_reads_always_allowed():
    guardian = ChangeGuardian()
    assert guardian.validate_request("GET", f"{GRAPH}/users")
    assert guardian.validate_request("POST", f"{GRAPH}/$batch")
    assert guardian.checks_performed == 2
    assert not guardian.violations


def test_dry_run_blocks_allowed_writes():
    guardian = ChangeGuardian()
    assert guardian.dry_run
    with pytest.raises(SafetyViolation):
        guardian.validate_request("POST", f"{GRAPH}/groups/g1/members/$ref")
    assert guardian.violations[0]["reason"] == "Write attempted in dry-run mode"


def test_apply_permits_only_allow_listed_writes():
    guardian = ChangeGuardian(apply=True)
    assert guardian.validate_request("POST", f"{GRAPH}/groups/g1/members/$ref")
    assert guardian.validate_request("PUT", f"{GRAPH}/users/u1/manager/$ref")

    with pytest.raises(SafetyViolation):
        guardian.validate_request("DELETE", f"{GRAPH}/groups/g1/members/u1/$ref")
    with pytest.raises(SafetyViolation):
        guardian.validate_request("PATCH", f"{GRAPH}/users/u1")
    with pytest.raises(SafetyViolation):
        guardian.validate_request("POST", f"{GRAPH}/users")

    assert len(guardian.changes) == 2
    assert len(guardian.violations) == 3


def test_ldap_attribute_allow_list():
    guardian = ChangeGuardian(apply=True)
    assert guardian.validate_ldap_modify("CN=Sales,DC=contoso,DC=com", "member")
    assert guardian.validate_ldap_modify("CN=Bob,DC=contoso,DC=com", "Manager")
    with pytest.raises(SafetyViolation):
        guardian.validate_ldap_modify("CN=Bob,DC=contoso,DC=com", "userAccountControl")


def test_audit_record_reports_mode_and_status():
    guardian = ChangeGuardian()
    record = guardian.get_audit_record()["change_guardian"]
    assert record["mode"] == "DRY-RUN"
    assert record["status"] == "CLEAN"

    with pytest.raises(SafetyViolation):
        guardian.validate_ldap_modify("CN=Sales,DC=contoso,DC=com", "member")
    record = guardian.get_audit_record()["change_guardian"]
    assert record["status"] == "VIOLATIONS_DETECTED"
    assert record["violations_detected"] == 1
