import pytest

from packdesk.core.errors import DependencyError, VersionCompatibilityError
from packdesk.packs.types import InstalledPack
from packdesk.packs.validation import (
    ValidationReport,
    findMajorVersionChanges,
    findRemovalBlockers,
    findUnmetDependencies,
    findUpdateBlockers,
    validateBatch,
)


INSTALLED = [
    InstalledPack(name="base", version="1.0.0", packId=1),
    InstalledPack(name="lib", version="1.0.0", packId=2, dependsOn=("base",)),
    InstalledPack(name="app", version="1.0.0", packId=3, dependsOn=("lib", "base")),
]



def test_unmet_dependencies_consider_installed_and_batch(manifest):
    assert findUnmetDependencies(["lib"], manifest, []) == {"lib": ["base"]}
    assert findUnmetDependencies(["lib"], manifest, [], batch=["base"]) == {}
    assert findUnmetDependencies(["lib", "base"], manifest, []) == {}
    assert findUnmetDependencies(["app"], manifest, INSTALLED[:1]) == {"app": ["lib"]}
    assert findUnmetDependencies(["docs"], manifest, []) == {}



def test_removal_blockers_use_recorded_dependencies():
    assert findRemovalBlockers(["base"], INSTALLED) == {"base": ["app", "lib"]}
    assert findRemovalBlockers(["base", "lib"], INSTALLED) == {"base": ["app"], "lib": ["app"]}
    assert findRemovalBlockers(["base", "lib", "app"], INSTALLED) == {}
    assert findRemovalBlockers(["app"], INSTALLED) == {}



def test_update_blockers_exempt_batch_and_removals():
    assert findUpdateBlockers(["lib"], INSTALLED) == {"lib": ["app"]}
    assert findUpdateBlockers(["lib", "app"], INSTALLED) == {}
    assert findUpdateBlockers(["lib"], INSTALLED, removes=["app"]) == {}



@pytest.mark.parametrize(
    "current, target, major",
    [
        ("1.5.0", "2.0.0", True),
        ("1.5.0", "1.9.0", False),
        ("1.5.0", "1.4.0", False),
        ("2.0.0", "1.0.0", True),
        ("v1.0", "1.2.3", False),
        ("junk", "1.0.0", True),
        ("junk", "junk", False),
        (None, "1.0.0", False),
    ],
)
def test_major_version_changes(current, target, major):
    found = findMajorVersionChanges({"p": (current, target)})
    assert (found == {"p": (current, target)}) is major



def test_report_raises_missing_before_blockers_before_versions():
    report = ValidationReport(
        missing={"lib": ["base"]},
        removalBlockers={"base": ["lib"]},
        majorChanges={"lib": ("1.0.0", "2.0.0")},
    )
    assert not report.ok
    with pytest.raises(DependencyError, match="Unmet dependencies: lib needs base") as excInfo:
        report.raiseForProblems()
    assert excInfo.value.toDict() == {
        "code": "dependency_error",
        "message": "Unmet dependencies: lib needs base",
        "missing": {"lib": ["base"]},
    }

    report.missing = {}
    with pytest.raises(DependencyError, match="Blocking dependents: cannot remove base"):
        report.raiseForProblems()

    report.removalBlockers = {}
    with pytest.raises(VersionCompatibilityError, match="Major version change not allowed: lib 1.0.0 -> 2.0.0"):
        report.raiseForProblems()

    report.majorChanges = {}
    assert report.ok
    report.raiseForProblems()



def test_blocking_merges_removal_and_update_blockers():
    report = ValidationReport(removalBlockers={"base": ["lib"]}, updateBlockers={"base": ["app"], "lib": ["app"]})
    with pytest.raises(DependencyError) as excInfo:
        report.raiseForProblems()
    assert excInfo.value.blocking == {"base": ["app", "lib"], "lib": ["app"]}
    assert "cannot remove base (required by lib), cannot update base (required by app); lib (required by app)" in excInfo.value.message



def test_validateBatch_checks_updates_for_new_dependencies(manifest):
    installed = [InstalledPack(name="lib", version="1.0.0", packId=1)]
    report = validateBatch(manifest, installed, updates={"lib": ("1.0.0", "1.2.0")})
    assert report.missing == {"lib": ["base"]}

    report = validateBatch(manifest, installed, installs=["base"], updates={"lib": ("1.0.0", "1.2.0")})
    assert report.ok



def test_packs_removed_in_the_batch_do_not_satisfy_dependencies(manifest):
    installed = [InstalledPack(name="base", version="1.0.0", packId=1)]
    assert findUnmetDependencies(["lib"], manifest, installed) == {}
    assert findUnmetDependencies(["lib"], manifest, installed, removes=["base"]) == {"lib": ["base"]}

    report = validateBatch(manifest, installed, installs=["lib"], removes=["base"])
    assert report.missing == {"lib": ["base"]}
    assert report.removalBlockers == {}
    with pytest.raises(DependencyError, match="Unmet dependencies: lib needs base"):
        report.raiseForProblems()
